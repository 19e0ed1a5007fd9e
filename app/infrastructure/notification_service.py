import json
import logging
from typing import Callable, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, messaging
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.interfaces.IProfileRepository import IProfileRepository
from app.interfaces.IPushService import IPushService

logger = logging.getLogger(__name__)

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"

class PushNotificationService(IPushService):
    """
    Firebase Cloud Messaging, best effort.

    A user without a registered device is not an error, and a failed send is
    logged and swallowed: a push must never fail the operation that caused it.
    """

    def __init__(
        self,
        profile_repo: IProfileRepository,
        credentials_json: Optional[str] = None,
        send: Optional[Callable] = None,
        send_multicast: Optional[Callable] = None,
    ):
        self.profiles = profile_repo
        self.app = None
        self.enabled = False
        self._send = send
        self._send_multicast = send_multicast

        if send is not None:
            # Transport supplied by the caller (tests, alternative gateways)
            self.enabled = True
            return

        if credentials_json:
            try:
                try:
                    self.app = firebase_admin.get_app()
                    logger.info("✅ [FCM] Reusing existing Admin SDK instance")
                except ValueError:
                    cred = credentials.Certificate(json.loads(credentials_json))
                    self.app = firebase_admin.initialize_app(cred)
                    logger.info("✅ [FCM] Admin SDK Initialized")
                self._send = lambda message: messaging.send(message, app=self.app)
                self._send_multicast = lambda message: messaging.send_each_for_multicast(message, app=self.app)
                self.enabled = True
            except (ValueError, json.JSONDecodeError) as e:
                logger.error(f"❌ [FCM] Initialization Error: {e}")
        else:
            logger.warning("⚠️ [FCM] No service account configured. Notifications will be logged only.")

    async def send_to_token(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> Optional[str]:
        if not token:
            return None

        if not self.enabled:
            logger.info(f"[Push Placeholder] To: {token} | {title}: {body}")
            return None

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={**{k: str(v) for k, v in (data or {}).items()}, "click_action": CLICK_ACTION},
            token=token,
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(channel_id="order_updates"),
            ),
        )
        try:
            response = await run_in_threadpool(self._send, message)
            logger.info(f"✅ [FCM] Sent '{title}': {response}")
            return response
        except Exception as e:
            logger.error(f"❌ [FCM] Error sending '{title}': {e}")
            return None

    async def send_to_user(self, user_id: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> Optional[str]:
        if not user_id:
            return None
        try:
            profile = await run_in_threadpool(self.profiles.get_profile, user_id)
        except Exception as e:
            logger.error(f"❌ [FCM] Profile lookup failed for {user_id}: {e}")
            return None

        if not profile or not profile.fcm_token:
            logger.info(f"[FCM] No token found for user {user_id}")
            return None
        return await self.send_to_token(profile.fcm_token, title, body, data)

    async def send_to_role(self, role: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> int:
        try:
            tokens = await run_in_threadpool(self.profiles.tokens_by_role, role)
        except Exception as e:
            logger.error(f"❌ [FCM] Could not load {role} tokens: {e}")
            return 0

        sent = 0
        for token in tokens:
            if await self.send_to_token(token, title, body, data):
                sent += 1
        logger.info(f"[FCM] Notified {sent}/{len(tokens)} {role}s: {title}")
        return sent

    async def send_multicast(self, tokens: List[str], title: str, body: str) -> int:
        tokens = [t for t in tokens or [] if t]
        if not tokens:
            return 0
        if not self.enabled or self._send_multicast is None:
            logger.info(f"[Push Placeholder] Broadcast to {len(tokens)} devices | {title}: {body}")
            return 0

        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=title, body=body),
            tokens=tokens,
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(channel_id="announcements"),
            ),
        )
        try:
            response = await run_in_threadpool(self._send_multicast, message)
            logger.info(f"✅ [FCM] Broadcast sent to {len(tokens)} devices: {response.success_count} successes")
            return response.success_count
        except Exception as e:
            logger.error(f"❌ [FCM] Broadcast Error: {e}")
            return 0
