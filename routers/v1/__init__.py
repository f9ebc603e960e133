# routers/v1/__init__.py
from fastapi import APIRouter

from . import dispatch, labs, logs, mill_inputs, mill_outputs, orders, references

api_v1 = APIRouter()

# reference registry (/mills/active before /mills/{id})
api_v1.include_router(references.party_router)
api_v1.include_router(references.mill_lookup_router)
api_v1.include_router(references.mill_router)
api_v1.include_router(references.quality_router)
api_v1.include_router(references.process_router)

# pipeline
api_v1.include_router(orders.router)
api_v1.include_router(mill_inputs.router)
api_v1.include_router(mill_outputs.router)
api_v1.include_router(dispatch.router)
api_v1.include_router(labs.router)

# audit
api_v1.include_router(logs.router)

__all__ = ["api_v1"]
