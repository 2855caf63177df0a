from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for client, challan, return and bill lists.

    `?page_size=` is honoured up to `max_page_size`; ledger views that must
    show every client at once disable pagination instead.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
