"""
Session — Estado conversacional por usuario.

`flow` es una unión etiquetada (None | GuaranteeFlow | SurveyFlow):
un solo sub-flujo puede existir a la vez y el validador exige que
coincida con `state`.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class FlowState(str, Enum):
    """Estados de la sesión."""

    IDLE = "idle"
    GUARANTEE_FLOW = "guarantee_flow"
    SURVEY_WAITING = "survey_waiting"
    CONVERSATION_ENDED = "conversation_ended"


class GuaranteeStep(str, Enum):
    """Pasos del registro de garantía, en orden estricto."""

    WAITING_INVOICE_NUMBER = "waiting_invoice_number"
    WAITING_INVOICE_PHOTO = "waiting_invoice_photo"
    WAITING_PRODUCT_PHOTO = "waiting_product_photo"
    WAITING_DESCRIPTION = "waiting_description"
    COMPLETED = "completed"


GUARANTEE_STEP_ORDER = list(GuaranteeStep)


class GuaranteeData(BaseModel):
    invoice_number: Optional[str] = None
    invoice_photo_ref: Optional[str] = None
    product_photo_ref: Optional[str] = None
    description: Optional[str] = None

    def is_complete(self) -> bool:
        return all(
            [
                self.invoice_number,
                self.invoice_photo_ref,
                self.product_photo_ref,
                self.description,
            ]
        )


class GuaranteeFlow(BaseModel):
    kind: Literal["guarantee_flow"] = "guarantee_flow"
    step: GuaranteeStep = GuaranteeStep.WAITING_INVOICE_NUMBER
    data: GuaranteeData = Field(default_factory=GuaranteeData)

    def advance(self, to: GuaranteeStep) -> None:
        """Avanza exactamente un paso; cualquier otro salto es un error."""
        current = GUARANTEE_STEP_ORDER.index(self.step)
        if GUARANTEE_STEP_ORDER.index(to) != current + 1:
            raise ValueError(
                f"Transición de garantía inválida: {self.step.value} → {to.value}"
            )
        self.step = to


class SurveyFlow(BaseModel):
    kind: Literal["survey"] = "survey"
    conversation_id: Optional[int] = None
    waiting_for_rating: bool = True


FlowData = Annotated[Union[GuaranteeFlow, SurveyFlow], Field(discriminator="kind")]

_FLOW_FOR_STATE = {
    FlowState.GUARANTEE_FLOW: GuaranteeFlow,
    FlowState.SURVEY_WAITING: SurveyFlow,
}


class Session(BaseModel):
    """Sesión de un usuario. Solo el Supervisor cambia `state`/`flow`."""

    state: FlowState = FlowState.IDLE
    flow: Optional[FlowData] = None
    # Copia cacheada; la fila de la conversación activa es la fuente de verdad
    ai_session_data: Dict[str, Any] = Field(default_factory=dict)
    last_activity: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _flow_matches_state(self) -> "Session":
        expected = _FLOW_FOR_STATE.get(self.state)
        if expected is None and self.flow is not None:
            raise ValueError(f"El estado {self.state.value} no admite datos de flujo")
        if expected is not None and not isinstance(self.flow, expected):
            raise ValueError(f"El estado {self.state.value} requiere {expected.__name__}")
        return self

    # Accessors

    @property
    def guarantee_flow(self) -> Optional[GuaranteeFlow]:
        return self.flow if isinstance(self.flow, GuaranteeFlow) else None

    @property
    def survey(self) -> Optional[SurveyFlow]:
        return self.flow if isinstance(self.flow, SurveyFlow) else None

    # Transitions

    def enter_guarantee_flow(self) -> GuaranteeFlow:
        self.flow = GuaranteeFlow()
        self.state = FlowState.GUARANTEE_FLOW
        return self.flow

    def enter_survey(self, conversation_id: Optional[int]) -> SurveyFlow:
        self.flow = SurveyFlow(conversation_id=conversation_id)
        self.state = FlowState.SURVEY_WAITING
        return self.flow

    def reset_to_idle(self) -> None:
        self.flow = None
        self.state = FlowState.IDLE

    def mark_ended(self) -> None:
        self.flow = None
        self.state = FlowState.CONVERSATION_ENDED

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity = now or datetime.now()

    # Serialization

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        """Restaura una sesión persistida. Lanza ValueError si está corrupta."""
        return cls.model_validate_json(raw)
