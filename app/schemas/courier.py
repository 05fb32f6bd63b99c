from pydantic import BaseModel, Field

from app.domain.delivery import Delivery


class RouteOut(BaseModel):
    courier_id: str
    stops: list[Delivery]


class ReorderIn(BaseModel):
    delivery_ids: list[str] = Field(min_length=1)


class ReorderOut(BaseModel):
    courier_id: str
    order: list[str]
    succeeded: list[str]
    failed: dict[str, str] = Field(default_factory=dict)


class OptimizeIn(BaseModel):
    strategy: str = "keep"
    apply: bool = False


class OptimizeOut(BaseModel):
    courier_id: str
    strategy: str
    proposed: list[str]
    applied: ReorderOut | None = None


class NextStopOut(BaseModel):
    courier_id: str
    after: str
    next: Delivery | None = None
