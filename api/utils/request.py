# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request and response utilities shared by the route modules.
"""

from flask import request, jsonify
from typing import Dict, Any, Optional, List
import logging

logger = logging.getLogger(__name__)

UPLOAD_ENCODINGS = ("utf-8-sig", "latin-1")


class ResponseBuilder:
    """Utility for building consistent API responses."""

    @staticmethod
    def success(
        data: Any = None,
        message: Optional[str] = None,
        status_code: int = 200,
        **extra: Any
    ) -> tuple:
        """
        Build success response.

        Args:
            data: Response data
            message: Message shown to the user
            status_code: HTTP status code
            **extra: Additional top-level keys

        Returns:
            Tuple of (response, status_code)
        """
        response: Dict[str, Any] = {'success': True}

        if data is not None:
            response['data'] = data
        if message:
            response['message'] = message
        response.update(extra)

        return jsonify(response), status_code

    @staticmethod
    def paginated(
        items: List[Any],
        total: int,
        page: int,
        limit: int,
        message: Optional[str] = None
    ) -> tuple:
        """
        Build paginated response.

        Args:
            items: List of items for current page
            total: Total number of items
            page: Current page number
            limit: Items per page
            message: Optional message (empty scope)

        Returns:
            Tuple of (response, status_code)
        """
        total_pages = (total + limit - 1) // limit if limit > 0 else 0

        return ResponseBuilder.success(
            items,
            message,
            pagination={
                'page': page,
                'limit': limit,
                'total': total,
                'totalPages': total_pages
            }
        )


def read_uploaded_text(field_name: str = 'file') -> Optional[str]:
    """
    Decode an uploaded text file from a multipart request.

    Returns:
        File content, or None when the field is missing or empty
    """
    upload = request.files.get(field_name)
    if upload is None or not upload.filename:
        return None

    raw = upload.read()
    for encoding in UPLOAD_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            logger.debug("Upload is not %s encoded", encoding, extra={"upload_name": upload.filename})
    return None
