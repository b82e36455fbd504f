import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from otpdesk.errors import Unauthorized
from otpdesk.services.auth_service import verify_token
from otpdesk.services.ws_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket('/ws')
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
    """Push channel: credit-update and transaction events for the caller's account."""
    try:
        account_id = verify_token(token)
    except Unauthorized:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, account_id)
    try:
        while True:
            # Wait for any message (ping etc.) to keep the connection alive
            message = await websocket.receive()
            if message.get('type') == 'websocket.disconnect':
                break
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f'WebSocket error for account {account_id}: {e}')
    finally:
        manager.disconnect(websocket, account_id)
