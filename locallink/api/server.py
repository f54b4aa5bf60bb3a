"""
HTTP API for the LocalLink marketplace.

A thin JSON surface over the services. The acting identity comes from the
`X-Actor-Id` header; the server only refuses intents that are inconsistent
with the stored data (wrong role, not a party to the order).
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any

from aiohttp import web

from locallink.core.exceptions import (
    AssistantUnavailable,
    AuthorizationException,
    ConditionFailed,
    LifecycleException,
    LocalLinkException,
    NotFoundException,
    TransientStoreError,
    ValidationException,
)
from locallink.core.metrics import metrics
from locallink.core.sentry_integration import capture_exception
from locallink.domain.entities import ActorBase, ShopProfile
from locallink.domain.value_objects import UserRole
from locallink.api.websocket import WebSocketManager, serve_websocket
from locallink.integrations.assistant import BUSY_REPLY
from locallink.services.container import ServiceContainer
from locallink.services.order_lifecycle import AcceptOfferDraft

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor-Id"

SERVICES_KEY = web.AppKey("services", ServiceContainer)
WS_MANAGER_KEY = web.AppKey("ws_manager", WebSocketManager)


def error_status(error: LocalLinkException) -> int:
    if isinstance(error, NotFoundException):
        return 404
    if isinstance(error, ValidationException):
        return 400
    if isinstance(error, AuthorizationException):
        return 403
    if isinstance(error, (LifecycleException, ConditionFailed)):
        return 409
    if isinstance(error, (TransientStoreError, AssistantUnavailable)):
        return 503
    return 500


def error_response(message: str, status: int, code: str | None = None) -> web.Response:
    body: dict[str, Any] = {"error": message}
    if code:
        body["code"] = code
    return web.json_response(body, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except LocalLinkException as e:
        status = error_status(e)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
            capture_exception(e, path=request.path)
        return error_response(e.message, status, type(e).__name__)
    except Exception as e:
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=True)
        capture_exception(e, path=request.path)
        return error_response("Internal server error", 500)


def _dump(value: Any) -> Any:
    if hasattr(value, "to_document"):
        return value.to_document()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return json.loads(json.dumps(dataclasses.asdict(value), default=str))
    return value


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationException("Request body must be JSON") from None
    if not isinstance(body, dict):
        raise ValidationException("Request body must be a JSON object")
    return body


def create_app(services: ServiceContainer) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services
    manager = WebSocketManager(services.repositories, services.alerts, services.notifications)
    app[WS_MANAGER_KEY] = manager

    repos = services.repositories

    async def current_actor(request: web.Request) -> ActorBase:
        actor_id = request.headers.get(ACTOR_HEADER) or request.query.get("actor_id")
        if not actor_id:
            raise web.HTTPUnauthorized(
                text=json.dumps({"error": f"{ACTOR_HEADER} header required"}),
                content_type="application/json",
            )
        return await repos.users.get_or_raise(actor_id)

    async def admin_actor(request: web.Request) -> ActorBase:
        actor = await current_actor(request)
        if not actor.is_admin:
            raise AuthorizationException("Admin console only")
        return actor

    # -- system --

    async def health_check(request: web.Request) -> web.Response:
        """Always 200; the status field carries the actual state."""
        store_healthy = True
        store_error = None
        try:
            await services.store.load_all("users")
        except TransientStoreError as e:
            store_healthy = False
            store_error = e.message
            logger.warning("Health check: store unhealthy - %s", e)

        return web.json_response(
            {
                "status": "healthy" if store_healthy else "degraded",
                "app": "LocalLink",
                "components": {
                    "store": {
                        "backend": services.settings.store_backend,
                        "status": "healthy" if store_healthy else "unhealthy",
                        "error": store_error,
                    },
                    "websocket": manager.get_stats(),
                },
                "metrics": metrics.get_summary(),
            }
        )

    async def metrics_prom(request: web.Request) -> web.Response:
        return web.Response(
            text=metrics.export_prometheus(),
            content_type="text/plain",
            charset="utf-8",
        )

    # -- actors & market --

    async def register_actor(request: web.Request) -> web.Response:
        actor = await services.marketplace.register_actor(await _json_body(request))
        return web.json_response(actor.to_document(), status=201)

    async def update_profile(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        updated = await services.marketplace.update_profile(actor.id, await _json_body(request))
        return web.json_response(updated.to_document())

    async def get_snapshot(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        snapshot = await repos.load_snapshot()
        payload = snapshot.to_dict()
        if isinstance(actor, ShopProfile):
            payload["leads"] = [
                r.to_document() for r in services.marketplace.visible_requests(actor, snapshot.requests)
            ]
        elif actor.role == UserRole.CUSTOMER:
            payload["quotes"] = [
                o.to_document() for o in services.marketplace.customer_offers(actor, snapshot)
            ]
        elif actor.is_delivery_partner:
            active, history = services.marketplace.partner_jobs(actor, snapshot.orders)
            payload["jobs"] = {
                "available": [
                    o.to_document()
                    for o in services.marketplace.available_jobs(actor, snapshot.orders)
                ],
                "active": [o.to_document() for o in active],
                "history": [o.to_document() for o in history],
            }
        return web.json_response(payload)

    async def broadcast_request(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        created = await services.marketplace.broadcast_request(
            actor, body.get("description", ""), body.get("category"), body.get("image")
        )
        return web.json_response(created.to_document(), status=201)

    async def cancel_request(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        cancelled = await services.marketplace.cancel_request(
            request.match_info["request_id"], actor.id
        )
        return web.json_response(cancelled.to_document())

    async def submit_offer(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        if not body.get("request_id"):
            raise ValidationException("request_id is required")
        offer = await services.marketplace.submit_offer(
            actor,
            body["request_id"],
            body.get("price"),
            body.get("message"),
            body.get("product_image"),
        )
        return web.json_response(offer.to_document(), status=201)

    async def send_message(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        offer = await services.marketplace.send_message(
            request.match_info["offer_id"], actor.id, body.get("text", ""), body.get("image")
        )
        return web.json_response(offer.to_document())

    async def accept_offer(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        offer = await repos.offers.get_or_raise(request.match_info["offer_id"])
        result = await services.lifecycle.accept_offer(
            AcceptOfferDraft(
                offer_id=offer.id,
                request_id=offer.request_id,
                shop_id=offer.shop_id,
                customer_id=actor.id,
                delivery_address=body.get("delivery_address"),
            )
        )
        return web.json_response(
            {
                "order": result.order.to_document(),
                "rejected_offer_ids": result.rejected_offer_ids,
                "resumed": result.resumed,
            },
            status=200 if result.resumed else 201,
        )

    async def claim_delivery(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        order = await services.lifecycle.claim_delivery(request.match_info["order_id"], actor)
        return web.json_response(order.to_document())

    async def advance_status(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        order = await services.lifecycle.advance_status(
            request.match_info["order_id"], actor.id, body.get("status", "")
        )
        return web.json_response(order.to_document())

    async def rate_order(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        result = await services.lifecycle.rate(
            request.match_info["order_id"],
            body.get("target", ""),
            body.get("stars"),
            rater_id=actor.id,
        )
        return web.json_response(
            {
                "order": result.order.to_document(),
                "rated_actor_id": result.rated_actor_id,
                "rating": result.rating,
                "total_ratings": result.total_ratings,
            }
        )

    async def post_update(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        body = await _json_body(request)
        update = await services.marketplace.post_daily_update(
            actor, body.get("text", ""), body.get("image")
        )
        return web.json_response(update.to_document(), status=201)

    # -- alerts --

    async def list_alerts(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        return web.json_response(
            {
                "unread": services.alerts.unread_count(actor.id),
                "alerts": [entry.to_dict() for entry in services.alerts.inbox(actor.id)],
            }
        )

    async def mark_alerts_read(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        services.alerts.mark_all_read(actor.id)
        return web.json_response({"unread": 0})

    async def clear_alerts(request: web.Request) -> web.Response:
        actor = await current_actor(request)
        services.alerts.clear(actor.id)
        return web.json_response({"unread": 0})

    # -- admin --

    async def admin_dead_leads(request: web.Request) -> web.Response:
        await admin_actor(request)
        leads = await services.admin.dead_leads()
        return web.json_response([r.to_document() for r in leads])

    async def admin_rescue(request: web.Request) -> web.Response:
        await admin_actor(request)
        body = await _json_body(request)
        offer = await services.admin.rescue_dead_lead(
            request.match_info["request_id"], body.get("price"), body.get("message")
        )
        return web.json_response(offer.to_document(), status=201)

    async def admin_finalize_pickup(request: web.Request) -> web.Response:
        await admin_actor(request)
        order = await services.admin.finalize_town_hub_pickup(request.match_info["order_id"])
        return web.json_response(order.to_document())

    async def admin_stats(request: web.Request) -> web.Response:
        await admin_actor(request)
        snapshot = await repos.load_snapshot()
        stats = await services.admin.marketplace_stats(snapshot)
        funnel = await services.admin.conversion_funnel(snapshot)
        stages = await services.admin.classify_requests(snapshot)
        return web.json_response(
            {
                "stats": _dump(stats),
                "funnel": [_dump(stage) for stage in funnel],
                "stages": {request_id: stage.value for request_id, stage in stages.items()},
            }
        )

    async def admin_interactions(request: web.Request) -> web.Response:
        await admin_actor(request)
        feed = await services.admin.interaction_feed()
        return web.json_response([_dump(event) for event in feed])

    async def admin_verify(request: web.Request) -> web.Response:
        await admin_actor(request)
        body = await _json_body(request)
        actor = await services.admin.set_verified(
            request.match_info["actor_id"], bool(body.get("verified", True))
        )
        return web.json_response(actor.to_document())

    # -- assistant --

    async def assistant_chat(request: web.Request) -> web.StreamResponse:
        body = await _json_body(request)
        chunks = services.assistant.stream_reply(body.get("history") or [])
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            first = ""
        except AssistantUnavailable as e:
            logger.warning("Assistant unavailable: %s", e.message)
            return web.json_response({"text": BUSY_REPLY, "error": True})

        response = web.StreamResponse(
            headers={"Content-Type": "text/plain; charset=utf-8", "Cache-Control": "no-cache"}
        )
        await response.prepare(request)
        await response.write(first.encode("utf-8"))
        async for chunk in chunks:
            await response.write(chunk.encode("utf-8"))
        await response.write_eof()
        return response

    async def assistant_transcribe(request: web.Request) -> web.Response:
        body = await _json_body(request)
        audio = body.get("audioBase64") or body.get("audio_base64")
        if not audio:
            raise ValidationException("No audio data")
        text = await services.transcriber.transcribe(audio)
        return web.json_response({"text": text})

    async def ws_handler(request: web.Request) -> web.StreamResponse:
        actor = await current_actor(request)
        return await serve_websocket(request, manager, services.alerts, actor)

    async def on_cleanup(app: web.Application) -> None:
        await manager.stop()

    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", health_check)
    app.router.add_get("/metrics", metrics_prom)
    app.router.add_get("/ws", ws_handler)

    app.router.add_post("/api/actors", register_actor)
    app.router.add_patch("/api/actors/me", update_profile)
    app.router.add_get("/api/snapshot", get_snapshot)
    app.router.add_post("/api/requests", broadcast_request)
    app.router.add_post("/api/requests/{request_id}/cancel", cancel_request)
    app.router.add_post("/api/offers", submit_offer)
    app.router.add_post("/api/offers/{offer_id}/messages", send_message)
    app.router.add_post("/api/offers/{offer_id}/accept", accept_offer)
    app.router.add_post("/api/orders/{order_id}/claim", claim_delivery)
    app.router.add_post("/api/orders/{order_id}/status", advance_status)
    app.router.add_post("/api/orders/{order_id}/rating", rate_order)
    app.router.add_post("/api/updates", post_update)

    app.router.add_get("/api/alerts", list_alerts)
    app.router.add_post("/api/alerts/read", mark_alerts_read)
    app.router.add_delete("/api/alerts", clear_alerts)

    app.router.add_get("/api/admin/dead-leads", admin_dead_leads)
    app.router.add_post("/api/admin/requests/{request_id}/rescue", admin_rescue)
    app.router.add_post("/api/admin/orders/{order_id}/finalize-pickup", admin_finalize_pickup)
    app.router.add_get("/api/admin/stats", admin_stats)
    app.router.add_get("/api/admin/interactions", admin_interactions)
    app.router.add_post("/api/admin/actors/{actor_id}/verify", admin_verify)

    app.router.add_post("/api/assistant/chat", assistant_chat)
    app.router.add_post("/api/assistant/transcribe", assistant_transcribe)

    return app
