from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from wayfarer.context import AppContext, get_context
from wayfarer.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db), ctx: AppContext = Depends(get_context)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    breakers = ctx.breakers.get_status()
    open_breakers = [b["dependency"] for b in breakers if not b["healthy"]]

    healthy = db_status == "healthy" and not open_breakers
    return {
        "status": "ok" if healthy else "degraded",
        "database": db_status,
        "scheduler": ctx.scheduler.get_status(),
        "circuit_breakers": breakers,
        "degraded_dependencies": open_breakers,
    }
