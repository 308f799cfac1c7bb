"""Container image packaging."""

from hermetica.image.packager import Runtime, build_image, elf_interpreter, image_config, shared_libraries

__all__ = ["Runtime", "build_image", "elf_interpreter", "image_config", "shared_libraries"]
