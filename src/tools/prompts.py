"""Prompt templates offered by the MCP server."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.server import McpServer

logger = logging.getLogger(__name__)


def register_prompts(server: "McpServer") -> None:
    """
    Register MCP prompts.

    Args:
        server: McpServer instance to register prompts with
    """

    @server.prompt()
    def code_review(code: str, language: str = "python", focus: str = "correctness") -> dict:
        """Ask for a review of a code snippet.

        Args:
            code: Source code to review
            language: Language of the snippet (default: python)
            focus: Review focus such as correctness, style or security
        """
        return {
            "description": f"Review of a {language} snippet",
            "messages": [
                {
                    "role": "user",
                    "content": {
                        "type": "text",
                        "text": (
                            f"Please review the following {language} code, focusing on "
                            f"{focus}. Point out concrete problems and suggest fixes.\n\n"
                            f"```{language}\n{code}\n```"
                        ),
                    },
                },
            ],
        }
