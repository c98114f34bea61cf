from __future__ import annotations

from fastapi import Request

from helpdesk.services.direct_message_hub import RealtimeServices
from helpdesk.services.message_fanout import MessageFanout


def get_realtime(request: Request) -> RealtimeServices:
    return request.app.state.realtime


def get_message_fanout(request: Request) -> MessageFanout:
    return get_realtime(request).fanout
