"""protoscaffold scaffolder -- writes the files of a gRPC service skeleton.

Each generator renders Jinja2 templates from ``templates/`` into the
directories laid out by the planner.

Quick usage::

    from protoscaffold.scaffolder import ServiceGenerator, TemplateRenderer

    renderer = TemplateRenderer()
    generator = ServiceGenerator(renderer)
    await generator.gen_etc(dir_ctx, descriptor, request)
"""

from protoscaffold.scaffolder.docker_gen import DockerGenerator
from protoscaffold.scaffolder.generator import BASE_MESSAGES, ServiceGenerator
from protoscaffold.scaffolder.persistence import PersistenceGenerator
from protoscaffold.scaffolder.templates import TemplateRenderer

__all__ = [
    "BASE_MESSAGES",
    "DockerGenerator",
    "PersistenceGenerator",
    "ServiceGenerator",
    "TemplateRenderer",
]
