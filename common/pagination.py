from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class LedgerPagination(PageNumberPagination):
    """Pages the in-memory ledger lists (stock, invoices, purchases).

    ``?page_size=`` is honoured up to ``max_page_size``; the response also
    carries the page number and page count so the POS table can render its
    pager without a second request.
    """

    page_size_query_param = "page_size"
    max_page_size = 500

    def get_paginated_response(self, data):
        return Response(
            {
                "count": self.page.paginator.count,
                "page": self.page.number,
                "pages": self.page.paginator.num_pages,
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
                "results": data,
            }
        )
