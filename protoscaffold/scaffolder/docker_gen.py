"""Container file generation for the rpc service.

Renders ``Dockerfile.j2`` into the output root, exposing the service port
and installing the runtime dependencies the enabled features need.
"""

from __future__ import annotations

from pathlib import Path

from protoscaffold.config import GenerationRequest
from protoscaffold.planner import DirectoryContext
from protoscaffold.scaffolder.templates import TemplateRenderer


class DockerGenerator:
    """Generates the service ``Dockerfile``."""

    def __init__(self, renderer: TemplateRenderer) -> None:
        self.renderer = renderer

    async def gen_dockerfile(
        self,
        dir_ctx: DirectoryContext,
        request: GenerationRequest,
    ) -> Path:
        """Write ``Dockerfile`` to the output root.

        Args:
            dir_ctx: Directory plan of the run.
            request: Generation request; ``port`` and ``persistence`` shape
                the image.

        Returns:
            The written path.
        """
        context = {
            "service_name": dir_ctx.service_name,
            "port": request.port,
            "persistence": request.persistence,
        }
        return await self.renderer.render_to_file(
            "extra/Dockerfile.j2", dir_ctx.work_dir / "Dockerfile", context
        )
