"""
Script para inicializar la base de datos SQLite de Tecno Express.
Ejecuta el schema y los datos de seed (productos, horarios y tienda).

Uso:
    python scripts/utils/init_db.py           # pregunta antes de recrear
    python scripts/utils/init_db.py --force   # recrea sin preguntar
"""

import argparse
import sqlite3
import sys
from pathlib import Path

# El script está en scripts/utils/, el proyecto está 2 niveles arriba
project_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(project_root))

from api.config import get_settings
from bot.db_service import SEED_PATH, DBService


def init_database(db_path: Path, force: bool = False) -> bool:
    """Crea la base con schema + seed. Devuelve False si se canceló."""

    # Si la DB ya existe, preguntar antes de sobrescribir
    if db_path.exists():
        print(f"⚠️  La base de datos ya existe en {db_path}")
        if not force:
            response = input("¿Deseas recrearla? Esto borrará todos los datos (y/n): ")
            if response.lower() != "y":
                print("❌ Operación cancelada")
                return False
        db_path.unlink()

    print(f"📦 Creando base de datos en {db_path}")
    db = DBService(db_path)

    print("📋 Ejecutando schema.sql...")
    db.ensure_schema()

    conn = sqlite3.connect(db_path)
    try:
        print("🌱 Insertando seed data...")
        conn.executescript(SEED_PATH.read_text(encoding="utf-8"))
        conn.commit()

        tables = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()

        print("\n✅ Base de datos inicializada correctamente")
        print(f"📊 Tablas creadas: {', '.join(t[0] for t in tables)}")

        # Mostrar conteo de registros
        for (table_name,) in tables:
            count = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
            print(f"   - {table_name}: {count} registros")

    except sqlite3.Error as e:
        print(f"\n❌ Error al inicializar la base de datos: {e}")
        conn.rollback()
        raise

    finally:
        conn.close()

    print(f"\n🎉 Inicialización completada. DB: {db_path}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inicializa la base de datos del bot")
    parser.add_argument("--force", action="store_true", help="Recrear sin preguntar")
    args = parser.parse_args()
    init_database(get_settings().db_full_path, force=args.force)
