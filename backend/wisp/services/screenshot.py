"""Mobile screenshots of deployed projects using Playwright."""
import asyncio

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from wisp.services.storage import StorageService
from wisp.utils.exceptions import ExternalServiceError
from wisp.utils.logger import logger

SYSTEM = "screenshot"

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)

# Make the page believe it runs as an installed PWA
STANDALONE_INIT_SCRIPT = """
Object.defineProperty(window.navigator, 'standalone', { get: () => true });
const originalMatchMedia = window.matchMedia.bind(window);
window.matchMedia = (query) => query === '(display-mode: standalone)'
    ? { matches: true, media: query, onchange: null,
        addListener: () => {}, removeListener: () => {},
        addEventListener: () => {}, removeEventListener: () => {},
        dispatchEvent: () => true }
    : originalMatchMedia(query);
"""


class ScreenshotService:
    """Captures a live URL in a phone-sized viewport and stores the JPEG."""

    def __init__(
        self,
        storage: StorageService,
        settle_seconds: float = 25.0,
        width: int = 390,
        height: int = 844,
        quality: int = 80,
    ):
        self.storage = storage
        self.settle_seconds = settle_seconds
        self.width = width
        self.height = height
        self.quality = quality

    async def render(self, url: str) -> bytes:
        """Load the page in a mobile context and return a JPEG screenshot."""
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context(
                    viewport={"width": self.width, "height": self.height},
                    device_scale_factor=2,
                    is_mobile=True,
                    has_touch=True,
                    user_agent=MOBILE_USER_AGENT,
                    color_scheme="dark",
                    service_workers="allow",
                    bypass_csp=True,
                )
                page = await context.new_page()
                await page.add_init_script(STANDALONE_INIT_SCRIPT)
                await page.goto(url, wait_until="networkidle")
                await page.wait_for_timeout(2000)
                image = await page.screenshot(type="jpeg", quality=self.quality, full_page=False)
                await context.close()
                return image
            finally:
                await browser.close()

    async def capture(self, project_id: str, user_id: str, url: str) -> str:
        """
        Screenshot a freshly deployed project and upload it.

        Waits ``settle_seconds`` first so the new deployment is serving.

        Returns:
            Public URL of the stored screenshot
        """
        if self.settle_seconds:
            await asyncio.sleep(self.settle_seconds)

        logger.info(f"[STORAGE] Taking screenshot of {url}")
        try:
            image = await self.render(url)
        except PlaywrightError as e:
            raise ExternalServiceError(
                SYSTEM,
                f"Failed to capture screenshot of {url}: {e}",
                operation="capture_screenshot",
                details={"project_id": project_id, "url": url},
                cause=e,
            )

        result = await self.storage.upload_bytes(image, f"{user_id}/{project_id}/screenshot.jpg", "image/jpeg")
        if not result.success:
            raise ExternalServiceError(
                SYSTEM,
                f"Failed to upload screenshot: {result.error}",
                operation="upload_screenshot",
                details={"project_id": project_id},
            )
        return result.url
