"""
Driver Factory - WebDriver creation for authoring sessions.

One call, one browser. The session that asked for it owns it and is the
only thing that may quit it.
"""

from typing import Optional
import logging

from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions

from pagesmith.core.config import SessionOptions

logger = logging.getLogger(__name__)

# Type alias for driver - can be extended to support other browsers
WebDriverType = webdriver.Chrome


def create_driver(options: Optional[SessionOptions] = None) -> WebDriverType:
    """
    Create a Chrome WebDriver configured from `options`.

    Example:
        >>> driver = create_driver(SessionOptions(headless=True))
        >>> driver.get("https://example.com")
    """
    options = options or SessionOptions()
    driver = webdriver.Chrome(options=build_chrome_options(options))
    driver.set_page_load_timeout(options.page_load_timeout)
    if options.implicit_wait:
        driver.implicitly_wait(options.implicit_wait)
    logger.info(
        f"[DriverFactory] Chrome started (headless={options.headless}, "
        f"{options.window_width}x{options.window_height})"
    )
    return driver


def build_chrome_options(options: SessionOptions) -> ChromeOptions:
    """Chrome command-line switches for an authoring session."""
    chrome_options = ChromeOptions()

    if options.headless:
        chrome_options.add_argument("--headless=new")

    if options.profile_path:
        chrome_options.add_argument(f"--user-data-dir={options.profile_path}")

    chrome_options.add_argument(f"--window-size={options.window_width},{options.window_height}")

    # Common stability options
    chrome_options.add_argument("--disable-extensions")
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--disable-gpu")
    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])

    return chrome_options
