from __future__ import annotations

from .interfaces import CHARACTER_FROM_TEXT, CHIBI_FROM_IMAGE, GenerationRequest

VALIDATION_PROMPT = (
    "Analyze the provided image and determine two things: 1. Is the image in a 'chibi' art style "
    "(characterized by small bodies, large heads, and cute features)? 2. Does the image contain only "
    "a single character (a solo photo)? Provide a brief reason for your determination. "
    "Respond in JSON format."
)

_SQUARE_WHITE = (
    "The background must be solid white. The final image must be a square with a 1:1 aspect ratio."
)


def similarity_instruction(similarity: int, *, include_pose: bool = False) -> str:
    target = (
        "the style and pose of the reference image"
        if include_pose
        else "the style of the reference image"
    )
    if similarity <= 25:
        return f"be very loosely inspired by {target}"
    if similarity <= 50:
        return f"take some creative inspiration from {target}"
    if similarity <= 75:
        return f"adhere to {target}"
    return f"very closely match {target}"


def build_prompt(request: GenerationRequest) -> str:
    text = request.prompt.strip()
    has_reference = request.reference_image is not None

    if request.kind == CHARACTER_FROM_TEXT:
        prompt = (
            f'Generate a full-body, forward-facing chibi character based on the following description: "{text}". '
            "The character should have a neutral expression. "
            "The background must be a solid white color (#FFFFFF). "
            "The final image must be a square with a 1:1 aspect ratio. "
            "The art style should be clean, with clear lines and vibrant colors."
        )
        if has_reference:
            prompt += (
                " Use the provided image as an artistic reference. "
                f"The final character should {similarity_instruction(request.similarity)}."
            )
        return prompt

    if request.kind == CHIBI_FROM_IMAGE:
        prompt = (
            "Analyze the character in the first provided image. Recreate this character in a clean, "
            "consistent, and appealing chibi art style suitable for expressions. "
            f'The character should have a "{text}" expression and be facing forward. '
            f"Maintain all key design elements, colors, and clothing. {_SQUARE_WHITE}"
        )
        if has_reference:
            prompt += (
                " Use the second provided image as an artistic reference. "
                f"The final character should {similarity_instruction(request.similarity)} "
                "while retaining the core features of the main character."
            )
        return prompt

    prompt = (
        "Using the first image as the base character, generate a new expression. "
        f'The character should now have the following expression or pose: "{text}". '
        "Make the expression very clear and expressive. IMPORTANT: You MUST strictly preserve the "
        "character's unique design, colors, and the established art style from the base image. "
        "Only the facial expression and body pose should change to match the request. "
        f"{_SQUARE_WHITE}"
    )
    if has_reference:
        prompt += (
            " The second image is a reference. For this generation, you should "
            f"{similarity_instruction(request.similarity, include_pose=True)}."
        )
    return prompt


__all__ = ["VALIDATION_PROMPT", "build_prompt", "similarity_instruction"]
