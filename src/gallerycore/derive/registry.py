from __future__ import annotations

from gallerycore.derive.base import DerivativeGenerator, NullGenerator
from gallerycore.derive.generic import ExternalThumbnailGenerator, GenericThumbnailGenerator
from gallerycore.derive.image import ImageOptimizedGenerator, ImageOriginalGenerator, ImageThumbnailGenerator
from gallerycore.derive.video import ConvertedOptimizedGenerator, VideoOriginalGenerator, VideoThumbnailGenerator
from gallerycore.models import AssetKind, DerivativeType

_NULL = NullGenerator()

GENERATORS: dict[tuple[AssetKind, DerivativeType], DerivativeGenerator] = {
    (AssetKind.IMAGE, DerivativeType.ORIGINAL): ImageOriginalGenerator(),
    (AssetKind.IMAGE, DerivativeType.THUMBNAIL): ImageThumbnailGenerator(),
    (AssetKind.IMAGE, DerivativeType.OPTIMIZED): ImageOptimizedGenerator(),
    (AssetKind.VIDEO, DerivativeType.ORIGINAL): VideoOriginalGenerator(),
    (AssetKind.VIDEO, DerivativeType.THUMBNAIL): VideoThumbnailGenerator(),
    (AssetKind.VIDEO, DerivativeType.OPTIMIZED): ConvertedOptimizedGenerator(),
    (AssetKind.AUDIO, DerivativeType.THUMBNAIL): GenericThumbnailGenerator(),
    (AssetKind.AUDIO, DerivativeType.OPTIMIZED): ConvertedOptimizedGenerator(),
    (AssetKind.GENERIC, DerivativeType.THUMBNAIL): GenericThumbnailGenerator(),
    (AssetKind.EXTERNAL, DerivativeType.THUMBNAIL): ExternalThumbnailGenerator(),
}

FALLBACK_THUMBNAIL: DerivativeGenerator = GenericThumbnailGenerator()


def generator_for(kind: AssetKind, dtype: DerivativeType) -> DerivativeGenerator:
    return GENERATORS.get((kind, dtype), _NULL)
