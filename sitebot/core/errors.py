from typing import Optional


class BusinessError(Exception):
    """Domain failure with a stable code and the HTTP status it maps to."""

    def __init__(self, message: str, code: str, status_code: int = 400,
                 retry_after: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = {"message": self.message, "code": self.code}
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data


def site_not_found(site_id: str) -> BusinessError:
    return BusinessError(f"Site not found: {site_id}", "SITE_NOT_FOUND", 404)


def validation_error(message: str) -> BusinessError:
    return BusinessError(message, "VALIDATION_ERROR", 400)


def conflict(message: str) -> BusinessError:
    return BusinessError(message, "CONFLICT", 409)


def crawl_invalid_url(url: str) -> BusinessError:
    return BusinessError(f"Invalid URL: {url}", "CRAWL_INVALID_URL", 400)


def crawl_insufficient_pages(processed: int, required: int) -> BusinessError:
    return BusinessError(
        f"Insufficient pages: {processed}/{required}", "CRAWL_INSUFFICIENT_PAGES", 400
    )


def crawl_already_in_progress(site_id: str) -> BusinessError:
    return BusinessError(
        f"A crawl is already in progress for site {site_id}", "CRAWL_ALREADY_IN_PROGRESS", 409
    )


def crawl_rate_limited(hours: int) -> BusinessError:
    return BusinessError(
        f"Sites can only be recrawled once every {hours} hour(s)", "CRAWL_RATE_LIMITED", 429
    )


def api_key_invalid() -> BusinessError:
    return BusinessError("Invalid API key", "WIDGET_API_KEY_INVALID", 401)


def api_key_inactive() -> BusinessError:
    return BusinessError("API key is inactive", "WIDGET_API_KEY_INACTIVE", 401)


def domain_mismatch(request_domain: str, site_domain: str) -> BusinessError:
    return BusinessError(
        f"Domain {request_domain} is not allowed for this widget (expected {site_domain})",
        "WIDGET_DOMAIN_MISMATCH",
        403,
    )


def session_limit(retry_after: int) -> BusinessError:
    return BusinessError(
        "Message limit reached for this session", "WIDGET_SESSION_LIMIT", 429, retry_after
    )


def ip_limit(retry_after: int) -> BusinessError:
    return BusinessError(
        "Too many messages from this address", "WIDGET_IP_LIMIT", 429, retry_after
    )


def message_not_found(message_id: str) -> BusinessError:
    return BusinessError(f"Message not found: {message_id}", "WIDGET_MESSAGE_NOT_FOUND", 404)


def question_not_found(question_id: str) -> BusinessError:
    return BusinessError(f"Question not found: {question_id}", "WIDGET_QUESTION_NOT_FOUND", 404)
