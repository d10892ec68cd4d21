from fastapi import APIRouter
from pydantic import BaseModel, Field
from decimal import Decimal

from ..db import get_conn
from .. import store
from ..logs import json_log
from ..models import GstSettings

router = APIRouter(prefix="/config", tags=["config"])


class GstSettingsIn(BaseModel):
    subsidized: Decimal = Field(..., ge=0, le=100)
    general: Decimal = Field(..., ge=0, le=100)
    food: Decimal = Field(..., ge=0, le=100)


@router.get("/gst")
def get_gst_settings():
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"gst": store.get_gst_settings(cur)}


@router.put("/gst")
def update_gst_settings(data: GstSettingsIn):
    gst = GstSettings(subsidized=data.subsidized, general=data.general, food=data.food)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                before = store.get_gst_settings(cur)
                store.save_gst_settings(cur, gst)
                store.write_audit(
                    cur,
                    "gst_settings_updated",
                    "gst_settings",
                    "1",
                    {"before": before.model_dump(mode="json"), "after": gst.model_dump(mode="json")},
                )
    json_log("info", "config.gst_updated", **gst.model_dump(mode="json"))
    return {"gst": gst}
