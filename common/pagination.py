from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination for customer, vendor and transaction lists.

    Clients can tune page size with `?page_size=`; values are capped so a
    tenant with a long transaction history still gets bounded payloads.
    """

    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 200
