"""
Image Artifact Model
Pydantic model for the container image produced by the Image Builder.
"""
from typing import List

from pydantic import BaseModel

from deploy_pipeline.core.constants import LATEST_TAG


class ImageArtifact(BaseModel):
    repository: str
    tag: str
    image_id: str = ""
    latest_tag: str = LATEST_TAG
    pushed_tags: List[str] = []

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def fully_published(self) -> bool:
        return self.tag in self.pushed_tags and self.latest_tag in self.pushed_tags
