"""
Approval Workflow Service
Blueprint registry.

    approval_bp  /api/v1/approval  routes, templates, applications
    health_bp    /api/v1/health    readiness / liveness probes
"""
