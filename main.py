import atexit
import os
from notifier import create_app
from notifier.firebase_init import get_db
from notifier.jobs import setup_periodic_tasks, start_event_listeners, stop_background_tasks

app = create_app()
engine = app.extensions['notifier']

if app.config.get('ENABLE_SCHEDULER'):
    setup_periodic_tasks(engine, app.config)
if app.config.get('ENABLE_EVENT_LISTENER'):
    start_event_listeners(engine, get_db())
atexit.register(stop_background_tasks, engine)

if __name__ == '__main__':
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1')
    port = int(os.environ.get('PORT', 8080))
    # The reloader would start a second scheduler and listener
    app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)
