"""
Quart control API for the station engine.
All routes return JSON; there is no authentication layer.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from quart import Quart, jsonify, request
from quart_cors import cors

from core.entities import (
    ContentType,
    OverrideItem,
    PlaybackLogEntry,
    RotationStep,
    ScheduledItem,
    ScheduledSlot,
    SelectionStrategy,
)
from core.errors import PersistenceError
from services.clock import utcnow
from workflows.factory import Station
from workflows.orchestrator import track_to_dict

logger = logging.getLogger(__name__)


# ==================== Request bodies ====================

class OverrideRequest(BaseModel):
    content_id: str = Field(min_length=1)
    title: str = ''
    content_type: ContentType
    urgent: bool = False


class RotationStepRequest(BaseModel):
    content_type: ContentType
    selection_strategy: SelectionStrategy = SelectionStrategy.LEAST_RECENTLY_PLAYED
    content_id: Optional[str] = None


class RotationRequest(BaseModel):
    steps: List[RotationStepRequest] = Field(min_length=1)


class SlotRequest(BaseModel):
    start_time: datetime
    content_id: Optional[str] = None
    content_type: Optional[ContentType] = None
    end_time: Optional[datetime] = None
    recurring: bool = False
    priority: int = 5
    label: Optional[str] = None

    @model_validator(mode='after')
    def _needs_target(self):
        if not self.content_id and self.content_type is None:
            raise ValueError('content_id or content_type is required')
        return self


class ContentRequest(BaseModel):
    content_type: ContentType
    title: str = Field(min_length=1)
    file_path: str = Field(min_length=1)
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    status: str = 'ready'
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ContentStatusRequest(BaseModel):
    status: str = Field(min_length=1)


# ==================== Serialization ====================

def override_to_dict(item: OverrideItem) -> Dict[str, Any]:
    return {
        'id': item.id,
        'content_id': item.content_id,
        'title': item.title,
        'content_type': item.content_type.value,
        'urgent': item.urgent,
    }


def step_to_dict(step: RotationStep) -> Dict[str, Any]:
    return {
        'position': step.position,
        'content_type': step.content_type.value,
        'selection_strategy': step.selection_strategy.value,
        'content_id': step.content_id,
    }


def history_to_dict(entry: PlaybackLogEntry) -> Dict[str, Any]:
    return {
        'content_id': entry.content_id,
        'content_type': entry.content_type.value,
        'title': entry.title,
        'started_at': entry.started_at.isoformat() if entry.started_at else None,
        'source': entry.source.value,
    }


def item_to_dict(item: ScheduledItem) -> Dict[str, Any]:
    return {
        'content_id': item.content_id,
        'title': item.title,
        'content_type': item.content_type.value,
        'file_path': item.file_path,
        'duration_seconds': item.duration_seconds,
        'source': item.source.value,
    }


def slot_to_dict(slot: ScheduledSlot) -> Dict[str, Any]:
    return {
        'id': slot.id,
        'start_time': slot.start_time.isoformat(),
        'end_time': slot.end_time.isoformat() if slot.end_time else None,
        'content_id': slot.content_id,
        'content_type': slot.content_type.value if slot.content_type else None,
        'recurring': slot.recurring,
        'priority': slot.priority,
        'label': slot.label,
    }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Slots are stored as UTC ISO strings so range queries compare correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_time_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    if not raw:
        return None
    return _as_utc(datetime.fromisoformat(raw))


def _bad_request(e: ValidationError):
    details = e.errors(include_url=False, include_context=False)
    return jsonify({'status': 'error', 'message': 'Invalid request body', 'details': details}), 400


# ==================== App factory ====================

def create_app(station: Station, autostart: bool = False) -> Quart:
    app = Quart(__name__)
    app = cors(app)

    orchestrator = station.orchestrator
    scheduler = station.scheduler

    @app.before_serving
    async def startup():
        await station.initialize()
        if autostart:
            await orchestrator.start()
        logger.info("Control API ready")

    @app.after_serving
    async def teardown():
        await station.shutdown()

    @app.errorhandler(PersistenceError)
    async def persistence_error(e: PersistenceError):
        logger.error(f"Storage failure while handling request: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 503

    # ---------- Engine ----------

    @app.route('/api/v1/engine/status')
    async def engine_status():
        return jsonify(orchestrator.status())

    @app.route('/api/v1/health')
    async def health():
        llm_ok = await station.llm.health_check() if station.llm is not None else None
        return jsonify({'status': 'ok', 'llm_reachable': llm_ok, 'engine_running': orchestrator.running})

    @app.route('/api/v1/engine/start', methods=['POST'])
    async def engine_start():
        await orchestrator.start()
        return jsonify({'status': 'started', 'engine': orchestrator.status()})

    @app.route('/api/v1/engine/stop', methods=['POST'])
    async def engine_stop():
        await orchestrator.stop()
        return jsonify({'status': 'stopped', 'engine': orchestrator.status()})

    @app.route('/api/v1/engine/cycle', methods=['POST'])
    async def engine_cycle():
        """Run one production cycle and wait for its result."""
        result = await orchestrator.run_single_cycle()
        return jsonify({
            'items_scraped': result.items_scraped,
            'stories_synthesized': result.stories_synthesized,
            'scripts_generated': result.scripts_generated,
            'tracks_rendered': result.tracks_rendered,
            'errors': result.errors,
        })

    # ---------- Buffer ----------

    @app.route('/api/v1/buffer')
    async def buffer_contents():
        tracks = orchestrator.peek_buffer()
        return jsonify({
            'size': len(tracks),
            'archive_size': station.buffer.archive_size,
            'tracks': [track_to_dict(t) for t in tracks],
        })

    # ---------- Override queue ----------

    @app.route('/api/v1/queue/override', methods=['GET', 'POST'])
    async def override_queue():
        if request.method == 'POST':
            data = await request.get_json() or {}
            try:
                body = OverrideRequest.model_validate(data)
            except ValidationError as e:
                return _bad_request(e)

            item = await scheduler.add_override(
                content_id=body.content_id,
                title=body.title,
                content_type=body.content_type,
                urgent=body.urgent,
            )
            return jsonify(override_to_dict(item)), 201

        return jsonify({'overrides': [override_to_dict(o) for o in scheduler.override_queue()]})

    @app.route('/api/v1/queue/override/<override_id>', methods=['DELETE'])
    async def remove_override(override_id: str):
        if not await scheduler.remove_override(override_id):
            return jsonify({'status': 'not_found', 'id': override_id}), 404
        return jsonify({'status': 'removed', 'id': override_id})

    @app.route('/api/v1/queue/next', methods=['POST'])
    async def next_item():
        """Resolve what plays next and record that playback started."""
        item = await scheduler.get_next_item()
        if item is None:
            return jsonify({'status': 'empty', 'message': 'No content available'}), 404
        await scheduler.log_playback(item)
        return jsonify(item_to_dict(item))

    # ---------- Rotation ----------

    @app.route('/api/v1/rotation', methods=['GET', 'PUT'])
    async def rotation():
        if request.method == 'PUT':
            data = await request.get_json() or {}
            try:
                body = RotationRequest.model_validate(data)
            except ValidationError as e:
                return _bad_request(e)

            steps = [
                RotationStep(
                    position=i,
                    content_type=s.content_type,
                    selection_strategy=s.selection_strategy,
                    content_id=s.content_id,
                    pattern_id=scheduler.pattern_id,
                )
                for i, s in enumerate(body.steps)
            ]
            saved = await scheduler.replace_rotation(steps)
            return jsonify({'steps': [step_to_dict(s) for s in saved], 'cursor': scheduler.rotation_cursor})

        steps = await scheduler.rotation()
        return jsonify({'steps': [step_to_dict(s) for s in steps], 'cursor': scheduler.rotation_cursor})

    # ---------- Schedule ----------

    @app.route('/api/v1/schedule', methods=['GET', 'POST'])
    async def schedule():
        if request.method == 'POST':
            data = await request.get_json() or {}
            try:
                body = SlotRequest.model_validate(data)
            except ValidationError as e:
                return _bad_request(e)

            end_time = _as_utc(body.end_time)
            if body.content_id:
                record = await station.store.get_content(body.content_id)
                if record is None:
                    return jsonify({'status': 'not_found', 'content_id': body.content_id}), 404
                # Without an explicit end, a pinned slot lasts as long as its content
                if end_time is None and record['duration_seconds']:
                    end_time = _as_utc(body.start_time) + timedelta(seconds=record['duration_seconds'])

            slot = ScheduledSlot(
                id=uuid.uuid4().hex,
                start_time=_as_utc(body.start_time),
                content_id=body.content_id,
                content_type=body.content_type,
                end_time=end_time,
                recurring=body.recurring,
                priority=body.priority,
                label=body.label,
            )
            await station.store.add_slot(slot)
            logger.info('Schedule slot created', extra={'slot_id': slot.id, 'start_time': slot.start_time.isoformat()})
            return jsonify(slot_to_dict(slot)), 201

        try:
            start, end = _parse_time_arg('from'), _parse_time_arg('to')
        except ValueError:
            return jsonify({'status': 'error', 'message': 'from/to must be ISO 8601 timestamps'}), 400

        slots = await station.store.list_slots(start, end)
        return jsonify({'slots': [slot_to_dict(s) for s in slots]})

    @app.route('/api/v1/schedule/preview')
    async def schedule_preview():
        """Slots starting in the next 24 hours."""
        now = utcnow()
        until = now + timedelta(hours=24)
        slots = await station.store.list_slots(now, until)
        return jsonify({
            'from': now.isoformat(),
            'to': until.isoformat(),
            'slots': [slot_to_dict(s) for s in slots],
        })

    @app.route('/api/v1/schedule/<slot_id>', methods=['DELETE'])
    async def remove_slot(slot_id: str):
        if not await station.store.delete_slot(slot_id):
            return jsonify({'status': 'not_found', 'id': slot_id}), 404
        return jsonify({'status': 'removed', 'id': slot_id})

    # ---------- Content library ----------

    @app.route('/api/v1/content', methods=['GET', 'POST'])
    async def content():
        if request.method == 'POST':
            data = await request.get_json() or {}
            try:
                body = ContentRequest.model_validate(data)
            except ValidationError as e:
                return _bad_request(e)

            content_id = await station.store.add_content(
                content_type=body.content_type,
                title=body.title,
                file_path=body.file_path,
                status=body.status,
                duration_seconds=body.duration_seconds,
                metadata=body.metadata,
            )
            logger.info('Content registered', extra={'content_id': content_id, 'type': body.content_type.value})
            return jsonify(await station.store.get_content(content_id)), 201

        try:
            content_type = ContentType(request.args['type']) if request.args.get('type') else None
            limit = int(request.args.get('limit', 50))
        except ValueError:
            return jsonify({'status': 'error', 'message': 'Invalid type or limit'}), 400

        items = await station.store.list_content(
            content_type=content_type,
            status=request.args.get('status') or None,
            limit=max(1, min(limit, 200)),
        )
        return jsonify({'items': items})

    @app.route('/api/v1/content/<content_id>', methods=['GET', 'DELETE'])
    async def content_item(content_id: str):
        if request.method == 'DELETE':
            if not await station.store.delete_content(content_id):
                return jsonify({'status': 'not_found', 'id': content_id}), 404
            logger.info('Content deleted', extra={'content_id': content_id})
            return jsonify({'status': 'removed', 'id': content_id})

        record = await station.store.get_content(content_id)
        if record is None:
            return jsonify({'status': 'not_found', 'id': content_id}), 404
        return jsonify(record)

    @app.route('/api/v1/content/<content_id>/status', methods=['PUT'])
    async def content_status(content_id: str):
        data = await request.get_json() or {}
        try:
            body = ContentStatusRequest.model_validate(data)
        except ValidationError as e:
            return _bad_request(e)

        if not await station.store.set_content_status(content_id, body.status):
            return jsonify({'status': 'not_found', 'id': content_id}), 404
        return jsonify(await station.store.get_content(content_id))

    # ---------- History ----------

    @app.route('/api/v1/history')
    async def history():
        try:
            limit = int(request.args.get('limit', 20))
        except ValueError:
            return jsonify({'status': 'error', 'message': 'limit must be an integer'}), 400

        entries = await scheduler.recent_history(max(1, min(limit, 200)))
        return jsonify({'history': [history_to_dict(e) for e in entries]})

    return app
