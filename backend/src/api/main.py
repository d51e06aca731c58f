"""
Diagnostics API: status, recent events and polling controls.

Served in-process next to the orchestrator; handlers are async so every read
and control runs on the orchestrator's event loop.
"""

from typing import Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from live_events.orchestrator import LiveEventsOrchestrator
from live_events.scheduler import EmergencyStopError
from tank01_api.client import Tank01APIError


def create_app(orchestrator: LiveEventsOrchestrator) -> FastAPI:
    app = FastAPI(title="Live Fantasy Events API", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/status")
    async def get_status():
        """Breaker, quota, polling, cache and store diagnostics."""
        return orchestrator.get_status()

    @app.get("/api/v1/events/recent")
    async def get_recent_events(
        window_minutes: float = Query(60, gt=0, description="Look-back window in minutes"),
        player_name: Optional[str] = Query(None, description="Case-insensitive substring filter"),
        min_points: Optional[float] = Query(None, description="Minimum absolute points"),
    ):
        events = orchestrator.event_store.filtered(
            window_minutes=window_minutes,
            player_name=player_name,
            min_points=min_points,
        )
        return {"events": [event.to_dict() for event in events], "count": len(events)}

    @app.get("/api/v1/events/league/{league_id}")
    async def get_league_events(
        league_id: str,
        window_minutes: Optional[float] = Query(None, gt=0, description="Optional look-back window in minutes"),
    ):
        events = orchestrator.event_store.by_league(league_id, window_minutes)
        return {"league_id": league_id, "events": [event.to_dict() for event in events], "count": len(events)}

    @app.get("/api/v1/events/export")
    async def export_events():
        return Response(content=orchestrator.event_store.export_json(), media_type="application/json")

    @app.post("/api/v1/polling/poll")
    async def trigger_poll():
        """Run one poll now, subject to spacing and rate limits."""
        try:
            games = await orchestrator.poll_now()
        except EmergencyStopError as e:
            return {"polled": False, "error": str(e)}
        except Tank01APIError as e:
            return {"polled": False, "error": str(e)}
        return {"polled": True, "active_games": len(games)}

    @app.post("/api/v1/polling/emergency-stop")
    async def emergency_stop():
        orchestrator.emergency_stop()
        return {"emergency_stop": True}

    @app.post("/api/v1/polling/reset")
    async def reset_polling():
        """Clear the emergency stop and close the circuit breaker."""
        orchestrator.reset()
        return {"emergency_stop": False, "rate_governor": orchestrator.governor.status()["circuit_breaker"]}

    return app
