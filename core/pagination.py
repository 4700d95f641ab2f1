"""
Page/limit pagination shared by list endpoints.
"""
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class MarketPagination(PageNumberPagination):
    """
    ``?page=<n>&limit=<m>`` with limit capped at 100.

    Response: {"items": [...], "total": N, "page": n, "pages": P}
    """
    page_size = 12
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data):
        return Response({
            'items': data,
            'total': self.page.paginator.count,
            'page': self.page.number,
            'pages': self.page.paginator.num_pages,
        })
