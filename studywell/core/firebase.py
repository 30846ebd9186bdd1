import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from studywell.reminders.exceptions import FirebaseInitError

logger = logging.getLogger(__name__)


def initialize_firebase(service_account: Optional[str], project_id: Optional[str] = None) -> firebase_admin.App:
    """Initialise (or reuse) the default Firebase app.

    ``service_account`` is either inline JSON or a path to the key file.
    Raises FirebaseInitError when no usable credentials are available.
    """
    try:
        app = firebase_admin.get_app()
        logger.info("🔍 [FCM] Reusing already initialised Firebase app")
        return app
    except ValueError:
        pass

    logger.info(f"🔍 [FCM] Initializing Firebase | project_id={project_id}")

    if not service_account or service_account.strip() == "":
        raise FirebaseInitError(
            "FIREBASE_SERVICE_ACCOUNT not set (Firebase Console → Project Settings → Service Accounts)"
        )

    raw = service_account.strip()
    try:
        if raw.startswith("{"):
            logger.info("🔍 [FCM] Using inline JSON credentials")
            cred = credentials.Certificate(json.loads(raw))
        elif os.path.exists(raw):
            logger.info(f"🔍 [FCM] Using file-based credentials: {raw}")
            cred = credentials.Certificate(raw)
        else:
            raise FirebaseInitError(f"Service account is neither JSON nor an existing file: {raw[:40]}")
        app = firebase_admin.initialize_app(cred, options={"projectId": project_id} if project_id else None)
    except FirebaseInitError:
        raise
    except (ValueError, OSError) as e:
        raise FirebaseInitError(f"Failed to initialise Firebase: {e!r}") from e

    logger.info(f"✅ [FCM] Firebase app initialized (project={app.project_id})")
    return app
