# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains middleware components for authentication, request
validation, error rendering and CORS in the activity programming API.
"""
