# API Routers Module
# Exports the API routers for deliverable review and payouts

from routers.deliverables import router as deliverables_router
from routers.reviews import router as reviews_router
from routers.payouts import router as payouts_router
from routers.webhooks import router as webhooks_router
from routers.notifications import router as notifications_router

__all__ = [
    'deliverables_router',
    'reviews_router',
    'payouts_router',
    'webhooks_router',
    'notifications_router',
]
