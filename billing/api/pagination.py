from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DataPagination(PageNumberPagination):
    page_size = 10
    page_query_param = 'page'
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data):
        return Response({
            'data': data,
            'pagination': {
                'current_page': self.page.number,
                'total_pages': self.page.paginator.num_pages,
                'total_items': self.page.paginator.count,
                'limit': self.page.paginator.per_page,
            },
        })

    def get_paginated_response_schema(self, schema):
        return {
            'type': 'object',
            'properties': {
                'data': schema,
                'pagination': {
                    'type': 'object',
                    'properties': {
                        'current_page': {'type': 'integer'},
                        'total_pages': {'type': 'integer'},
                        'total_items': {'type': 'integer'},
                        'limit': {'type': 'integer'},
                    },
                },
            },
        }
