"""
FABCHARGE - Serverless Entry Point

Wraps the webhook app for serverless hosting. The facility tracker calls one
function invocation per notification, which matches the one-notification,
one-pipeline-run model of the server.
"""

import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from api.server import app  # noqa: E402

# Serverless handler
handler = Mangum(app, lifespan="auto")
