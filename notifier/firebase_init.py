import os
import firebase_admin
from firebase_admin import credentials, firestore, messaging, auth

_app = None
_db = None


def init_firebase(app_config=None):
    global _app, _db

    if _app is not None:
        return _app

    app_config = app_config or {}
    cred_path = (app_config.get('GOOGLE_APPLICATION_CREDENTIALS')
                 or os.environ.get('GOOGLE_APPLICATION_CREDENTIALS', './firebase-service-account.json'))

    if os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
    else:
        cred = credentials.ApplicationDefault()

    options = {}
    project_id = app_config.get('FIREBASE_PROJECT_ID') or os.environ.get('FIREBASE_PROJECT_ID', '')
    if project_id:
        options['projectId'] = project_id
    # Bounds every HTTP call the Admin SDK makes, FCM sends included
    http_timeout = app_config.get('FCM_HTTP_TIMEOUT')
    if http_timeout:
        options['httpTimeout'] = http_timeout

    _app = firebase_admin.initialize_app(cred, options=options if options else None)
    _db = firestore.client()
    return _app


def get_db():
    global _db
    if _db is None:
        init_firebase()
    return _db


def get_messaging():
    if _app is None:
        init_firebase()
    return messaging


def get_auth():
    return auth
