from metersync.api.routes.records import router as records_router
from metersync.api.routes.serials import router as serials_router
from metersync.api.routes.sync import router as sync_router

__all__ = [
    "records_router",
    "serials_router",
    "sync_router",
]
