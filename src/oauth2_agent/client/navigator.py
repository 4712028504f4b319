"""Navigation capability used by login and logout.

Clients never touch a browser directly. They ask a ``Navigator`` for the
current location and to navigate elsewhere, so the flow can run against a
real browser, an embedded web view, or a test double.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Navigator(Protocol):
    """Protocol for top-level navigation.

    Allows different strategies:
    - Desktop browser (``BrowserNavigator``)
    - Embedded web view
    - Recording double in tests
    """

    def navigate_to(self, url: str) -> None:
        """Perform a full navigation to ``url``."""
        ...

    def current_location(self) -> str:
        """Return the URL the user is currently on."""
        ...


class BrowserNavigator:
    """Navigator that opens URLs in the system web browser.

    A desktop application has no address bar of its own, so the location
    reported back is whatever the application last declared with
    ``set_location``.
    """

    def __init__(self, location: str):
        """Initialize the navigator.

        Args:
            location: URL identifying the application's current page, used
                as the post-logout redirect target
        """
        self._location = location

    def set_location(self, location: str) -> None:
        self._location = location

    def current_location(self) -> str:
        return self._location

    def navigate_to(self, url: str) -> None:
        logger.info("Opening browser for navigation")
        if not webbrowser.open(url):
            logger.warning("No browser available to open the navigation URL")
