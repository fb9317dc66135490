class TokentallyError(Exception):
    """
    base class for errors raised inside the aggregation pipeline.
    None of them escape Aggregator.get_usages.
    """


class PricingFetchError(TokentallyError):
    """
    the pricing table could not be downloaded or decoded.
    """


class PageFetchError(TokentallyError):
    """
    a single page of a paginated endpoint could not be fetched.
    """

    def __init__(self, page: "int", reason: "str") -> "None":
        super().__init__(f"page {page}: {reason}")
        self.page = page
        self.reason = reason
