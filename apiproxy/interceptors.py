"""Interceptor contracts: typed hook signatures and the helpers that run them.

Hooks are optional callables. An absent hook (``None``) means the capability is
not configured; there are no no-op subclasses.

  URLInterceptor            httpx.URL -> httpx.URL            (value in / value out)
  RequestInterceptor        httpx.Request -> None             (mutates in place)
  JSONInterceptor           decoded JSON value -> new value   (raise to reject)
  FormInterceptor           FormValues -> FormValues          (raise to reject)
  MultipartFormInterceptor  MultipartWriter -> None           (raise to reject)
  ErrorInterceptor          APIClientError -> Exception       (remap, never drop)

JSON, form and multipart interceptors may also be coroutine functions; their
results are awaited.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Union

import httpx

from apiproxy.errors import APIClientError, InterceptorError

if TYPE_CHECKING:
    from apiproxy.proxy.multipart import MultipartWriter

# Multi-valued form mapping. Order within a key is preserved but not significant.
FormValues = dict[str, list[str]]

URLInterceptor = Callable[[httpx.URL], httpx.URL]
RequestInterceptor = Callable[[httpx.Request], None]
JSONInterceptor = Callable[[Any], Union[Any, Awaitable[Any]]]
FormInterceptor = Callable[[FormValues], Union[FormValues, Awaitable[FormValues]]]
MultipartFormInterceptor = Callable[["MultipartWriter"], Optional[Awaitable[None]]]
ErrorInterceptor = Callable[[APIClientError], Exception]


def apply_url_interceptors(
    url: httpx.URL,
    interceptors: Iterable[Optional[URLInterceptor]],
) -> httpx.URL:
    """Run URL interceptors in order, each receiving the previous result.

    ``None`` entries are skipped so a client-level slot can be passed as-is.

    Raises:
        InterceptorError: A hook raised, or returned something other than a URL.
    """
    for intercept in interceptors:
        if intercept is None:
            continue
        try:
            result = intercept(url)
        except APIClientError:
            raise
        except Exception as exc:
            raise InterceptorError("url_interceptor", str(exc)) from exc
        if not isinstance(result, httpx.URL):
            raise InterceptorError(
                "url_interceptor",
                f"expected httpx.URL, got {type(result).__name__}",
            )
        url = result
    return url


def apply_request_interceptors(
    request: httpx.Request,
    interceptors: Iterable[Optional[RequestInterceptor]],
) -> None:
    """Run request interceptors in order against the same request object."""
    for intercept in interceptors:
        if intercept is None:
            continue
        try:
            intercept(request)
        except APIClientError:
            raise
        except Exception as exc:
            raise InterceptorError("request_interceptor", str(exc)) from exc


async def call_interceptor(name: str, hook: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async body hook and return its (awaited) result.

    Errors already in the APIClientError taxonomy pass through unchanged;
    anything else is wrapped in InterceptorError with the cause chained.
    """
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            result = await result
    except APIClientError:
        raise
    except Exception as exc:
        raise InterceptorError(name, str(exc)) from exc
    return result
