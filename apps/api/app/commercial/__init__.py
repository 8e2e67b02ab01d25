from app.commercial.api import routers
from app.commercial.errors import (
    BusinessRuleError,
    CommercialError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from app.commercial.lifecycle import QuotationAction, QuotationStatus
from app.commercial.logs import PromiseLogService, promise_log_service
from app.commercial.promises import PromiseService, promise_service
from app.commercial.quotations import QuotationService, quotation_service
from app.commercial.stages import PipelineStageService, pipeline_stage_service

__all__ = [
    "routers",
    "CommercialError",
    "NotFoundError",
    "ValidationFailedError",
    "BusinessRuleError",
    "ConflictError",
    "ForbiddenError",
    "QuotationStatus",
    "QuotationAction",
    "PipelineStageService",
    "pipeline_stage_service",
    "PromiseService",
    "promise_service",
    "QuotationService",
    "quotation_service",
    "PromiseLogService",
    "promise_log_service",
]
