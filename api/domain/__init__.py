# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the activity programme.

This package contains pure business logic functions with no side effects:
recurrence expansion, record construction, access scoping, visibility
projection and lifecycle transitions.
"""
