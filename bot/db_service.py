"""
DB Service — Capa de acceso a datos del bot.

Encapsula TODAS las operaciones SQLite en métodos tipados,
evitando SQL inline disperso en el supervisor/handlers.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Raíz del proyecto (donde vive database/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SCHEMA_PATH = PROJECT_ROOT / "database" / "schema" / "schema.sql"
SEED_PATH = PROJECT_ROOT / "database" / "seeds" / "seed.sql"


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class DBService:
    """Servicio de acceso a datos SQLite para el bot conversacional."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    # helpers

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def ensure_schema(self, schema_path: Path = SCHEMA_PATH) -> None:
        """Crea las tablas que falten (el schema es idempotente)."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        with self._conn() as conn:
            conn.executescript(schema_sql)

    @staticmethod
    def _conversation_row(row: Optional[sqlite3.Row]) -> Optional[Dict]:
        if row is None:
            return None
        d = dict(row)
        d["ai_session_data"] = json.loads(d["ai_session_data"] or "{}")
        return d

    # Users

    def upsert_user(
        self,
        user_id: int,
        chat_id: int,
        username: str = None,
        first_name: str = None,
        last_name: str = None,
    ) -> Dict:
        """Crea o actualiza un usuario de Telegram y su último chat."""
        now = _now()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, first_name, last_name, last_chat_id, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username = COALESCE(excluded.username, users.username),
                    first_name = COALESCE(excluded.first_name, users.first_name),
                    last_name = COALESCE(excluded.last_name, users.last_name),
                    last_chat_id = excluded.last_chat_id,
                    updated_at = excluded.updated_at
                """,
                (user_id, username, first_name, last_name, chat_id, now),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return dict(row)

    def get_user(self, user_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return dict(row) if row else None

    # Sessions

    def get_session_json(self, user_id: int) -> Optional[str]:
        """Devuelve el JSON crudo de la sesión persistida (sin parsear)."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT session FROM user_sessions WHERE user_id = ?", (user_id,)
            ).fetchone()
            return row["session"] if row else None

    def save_session_json(self, user_id: int, raw: str) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO user_sessions (user_id, session, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    session = excluded.session,
                    updated_at = excluded.updated_at
                """,
                (user_id, raw, _now()),
            )
            conn.commit()

    # Messages

    def save_message(
        self, user_id: int, chat_id: int, message_type: str, content: str = None
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO messages (user_id, chat_id, message_type, content)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, chat_id, message_type, content),
            )
            conn.commit()

    # Conversations

    def get_conversation(self, conversation_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            return self._conversation_row(row)

    def get_active_conversation(self, user_id: int) -> Optional[Dict]:
        """Conversación activa del usuario (como mucho una)."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE user_id = ? AND status = 'active'",
                (user_id,),
            ).fetchone()
            return self._conversation_row(row)

    def get_active_conversations(self) -> List[Dict]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations WHERE status = 'active' ORDER BY started_at"
            ).fetchall()
            return [self._conversation_row(r) for r in rows]

    def open_conversation(
        self, user_id: int, ai_session_data: Optional[Dict[str, Any]] = None
    ) -> Dict:
        """
        Abre una conversación para el usuario.

        Si ya tiene una activa se devuelve esa (con ai_session_data
        actualizado si se pasó), nunca se crea una segunda.
        """
        existing = self.get_active_conversation(user_id)
        if existing is not None:
            if ai_session_data is not None:
                self.update_ai_session_data(existing["id"], ai_session_data)
                existing["ai_session_data"] = ai_session_data
            return existing

        data_json = json.dumps(ai_session_data or {}, ensure_ascii=False)
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO conversations (user_id, started_at, status, ai_session_data)
                VALUES (?, ?, 'active', ?)
                """,
                (user_id, _now(), data_json),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return self._conversation_row(row)

    def end_conversation(self, conversation_id: int, reason: str = None) -> bool:
        """
        Finaliza una conversación.

        Idempotente: si ya estaba finalizada no cambia nada y devuelve False.
        """
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE conversations
                SET status = 'ended', ended_at = ?, end_reason = ?
                WHERE id = ? AND status = 'active'
                """,
                (_now(), reason, conversation_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def update_ai_session_data(self, conversation_id: int, data: Dict[str, Any]) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE conversations SET ai_session_data = ? WHERE id = ?",
                (json.dumps(data, ensure_ascii=False), conversation_id),
            )
            conn.commit()

    # Guarantees

    def create_guarantee(
        self,
        user_id: int,
        invoice_number: str,
        invoice_photo_ref: str,
        product_photo_ref: str,
        description: str,
    ) -> Dict:
        """Registra una garantía en estado 'pending' y la devuelve."""
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO guarantees
                    (user_id, invoice_number, invoice_photo_ref, product_photo_ref, description, status, created_at)
                VALUES (?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    user_id,
                    invoice_number,
                    invoice_photo_ref,
                    product_photo_ref,
                    description,
                    _now(),
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM guarantees WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return dict(row)

    def get_user_guarantees(self, user_id: int, limit: int = 10) -> List[Dict]:
        """Garantías de un usuario, más recientes primero."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM guarantees
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
            return [dict(r) for r in rows]

    # Surveys

    def create_survey(
        self, user_id: int, rating: int, conversation_id: int = None, feedback: str = None
    ) -> Dict:
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO satisfaction_surveys (user_id, conversation_id, rating, feedback, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, conversation_id, rating, feedback, _now()),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM satisfaction_surveys WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return dict(row)

    def get_survey_stats(self) -> Dict:
        """Total, promedio y distribución de calificaciones."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT rating, COUNT(*) AS count FROM satisfaction_surveys GROUP BY rating"
            ).fetchall()

        distribution = {rating: 0 for rating in range(1, 6)}
        for row in rows:
            distribution[row["rating"]] = row["count"]
        total = sum(distribution.values())
        average = (
            sum(rating * count for rating, count in distribution.items()) / total
            if total
            else 0.0
        )
        return {"total": total, "average": round(average, 2), "distribution": distribution}

    # Products

    def get_products(
        self,
        brand: str = None,
        min_price: float = None,
        max_price: float = None,
        limit: int = 10,
    ) -> List[Dict]:
        """Catálogo con filtros opcionales, ordenado por id."""
        clauses = []
        params: List[Any] = []
        if brand:
            clauses.append("LOWER(brand) = LOWER(?)")
            params.append(brand)
        if min_price is not None:
            clauses.append("price >= ?")
            params.append(min_price)
        if max_price is not None:
            clauses.append("price <= ?")
            params.append(max_price)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM products {where} ORDER BY id LIMIT ?", params
            ).fetchall()
            return [dict(r) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM products WHERE id = ?", (product_id,)
            ).fetchone()
            return dict(row) if row else None

    # Store info

    def get_schedules(self) -> List[Dict]:
        """Horarios de atención, de lunes a domingo."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM schedules
                ORDER BY CASE day_of_week WHEN 0 THEN 7 ELSE day_of_week END
                """
            ).fetchall()
            return [dict(r) for r in rows]

    def get_store_config(self) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM store_config ORDER BY id LIMIT 1").fetchone()
            return dict(row) if row else None
