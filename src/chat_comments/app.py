"""Command-line entry point for the chat comments preview service."""

import os
import logging

from dotenv import load_dotenv

from chat_comments.config import config_path, load_bootstrap

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Validate the bootstrap config and serve the local app."""
    import uvicorn

    _, config = load_bootstrap()
    if not config.is_complete:
        raise ValueError(
            f"ajaxUrl, nonce and postId are required (set them in {config_path()} "
            "or via CHAT_COMMENTS_AJAX_URL, CHAT_COMMENTS_NONCE, CHAT_COMMENTS_POST_ID)"
        )

    host = os.getenv("CHAT_COMMENTS_HOST", "127.0.0.1")
    port = int(os.getenv("CHAT_COMMENTS_PORT", "8080"))

    logger.info(f"Starting chat comments preview for post {config.post_id} on {host}:{port}")
    uvicorn.run("chat_comments.local_app:app", host=host, port=port)


if __name__ == "__main__":
    main()
