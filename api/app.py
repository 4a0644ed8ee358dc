"""
Programmes d'activités API - Flask Application Entry Point

This module initializes the Flask application with OpenAPI 3.0 support,
configures middleware, and wires the services of the activity programming
and recurrence engine.
"""

import os
import logging
from datetime import datetime
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag
from observability.config import setup_observability
from observability.middleware import add_observability_middleware

# Import middleware and services
from middleware.cors import configure_cors
from middleware.error_handler import ErrorHandlerMiddleware
from middleware.auth import AuthMiddleware
from services.mongodb import MongoDBService
from services.auth import AuthService
from services.audit import AuditService
from services.permissions import PermissionService
from services.activity_store import ActivityStore, EstablishmentDirectory

SERVICE_NAME = "programmes-activites-api"
SERVICE_VERSION = "1.0.0"

# Initialize observability first
setup_observability()

logger = logging.getLogger(__name__)

# OpenAPI info
info = Info(
    title="Programmes d'activités API",
    version=SERVICE_VERSION,
    description="Scheduling, review and reporting of activities at public establishments"
)

# API tags for organization
tags = [
    Tag(name="Activities", description="Activity programming, review and reporting"),
    Tag(name="Health", description="System health and status")
]

# Create Flask app with OpenAPI
app = OpenAPI(__name__, info=info, tags=tags)

# Add observability middleware
add_observability_middleware(app)

# Environment configuration
app.config['ENVIRONMENT'] = os.getenv('ENVIRONMENT', 'development')
app.config['DEBUG'] = app.config['ENVIRONMENT'] == 'development'

# Security configuration
app.config['JWT_SECRET'] = os.getenv('JWT_SECRET')
app.config['JWT_ALGORITHM'] = os.getenv('JWT_ALGORITHM', 'HS256')

# Database configuration
app.config['MONGODB_URI'] = os.getenv('MONGODB_URI', 'mongodb://localhost:27017/portail_activites_dev')
app.config['MONGODB_DATABASE'] = os.getenv('MONGODB_DATABASE', 'portail_activites_dev')

# Feature flags
app.config['OTEL_ENABLED'] = os.getenv('OTEL_ENABLED', 'true').lower() == 'true'

# API configuration
app.config['BASE_URL'] = os.getenv('BASE_URL', 'http://localhost:5000')
app.config['CORS_ALLOWED_ORIGINS'] = os.getenv('CORS_ALLOWED_ORIGINS', '')

# Initialize services
mongodb_service = MongoDBService(app.config['MONGODB_URI'], app.config['MONGODB_DATABASE'])
auth_service = AuthService(app.config['JWT_SECRET'], app.config['JWT_ALGORITHM'])
audit_service = AuditService(mongodb_service)
permission_service = PermissionService(mongodb_service)
activity_store = ActivityStore(mongodb_service)
establishment_directory = EstablishmentDirectory(mongodb_service)

# Initialize middleware
auth_middleware = AuthMiddleware(auth_service)
error_handler = ErrorHandlerMiddleware(app)

# Configure CORS
cors_middleware = configure_cors(app, allow_credentials=True)

# Make services available to routes
app.mongodb_service = mongodb_service
app.auth_service = auth_service
app.audit_service = audit_service
app.permission_service = permission_service
app.check_permission = permission_service.check_permission
app.activity_store = activity_store
app.establishment_directory = establishment_directory
app.auth_middleware = auth_middleware

# Register routes
from routes.activities import activities_bp

app.register_api(activities_bp)


@app.route('/api/healthz')
def health_check():
    """Health check endpoint reporting MongoDB connectivity."""
    mongodb_health = app.mongodb_service.health_check()
    healthy = mongodb_health.get("status") == "healthy"

    health_data = {
        "status": "healthy" if healthy else "unhealthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": app.config['ENVIRONMENT'],
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "dependencies": {
            "mongodb": mongodb_health
        }
    }

    if not healthy:
        logger.warning("Health check failed", extra={"mongodb": mongodb_health})

    return jsonify(health_data), 200 if healthy else 503


if __name__ == '__main__':
    # Development server
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=app.config['DEBUG']
    )
