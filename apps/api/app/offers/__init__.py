from app.offers.api import router
from app.offers.editor import NavigationDecision, OfferDraft, OfferEditorState
from app.offers.models import Offer
from app.offers.schemas import OfferCreate, OfferRead, OfferUpdate, PublicOfferRead
from app.offers.service import OfferService, offer_service

__all__ = [
    "router",
    "Offer",
    "OfferCreate",
    "OfferRead",
    "OfferUpdate",
    "PublicOfferRead",
    "OfferService",
    "offer_service",
    "OfferDraft",
    "OfferEditorState",
    "NavigationDecision",
]
