"""
Rewards engine entry point.
"""
import os
import sys
import logging

from app import create_app

logger = logging.getLogger('rewards')

# Default to production for container deployment
config_name = os.getenv('FLASK_ENV', 'production')

try:
    app = create_app(config_name)
    logger.info(f'[Rewards] App created ({config_name}), {len(list(app.url_map.iter_rules()))} routes')
except Exception as e:
    logger.exception(f'[Rewards] FATAL ERROR during app creation: {e}')
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
