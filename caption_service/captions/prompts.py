"""
Fixed prompts for LoRA training captions.
"""

SYSTEM_PROMPT = (
    "You are an expert image captioner for LoRA training. Your task is to create detailed, "
    "accurate captions that describe only what is visible in the image. "
    "Follow the tagging guidelines precisely."
)

CAPTION_GUIDELINES = """
I need you to create a detailed caption for an image that will be used for training a LoRA (Low-Rank Adaptation) model.
The caption should follow these guidelines:

1. Describe ONLY what is actually visible in the image
2. Be accurate and consistent in terminology
3. Balance detail with generalization
4. Follow this structure:
   - Overall image type/style
   - Number and type of subjects
   - Major characteristics (appearance, clothing)
   - Actions or poses
   - Setting/environment
   - Supporting details
   - Style/mood descriptors

5. Include 20-30 tags for standard complexity images
6. Separate tags with commas
7. Avoid redundancy, over-interpretation, or subjective descriptions

Image details:
- Resolution: {width}x{height}
- Format: {format}

Please provide ONLY the comma-separated tags, with no additional text or explanation.
"""


def build_caption_prompt(width: int, height: int, image_format: str) -> str:
    return CAPTION_GUIDELINES.format(width=width, height=height, format=image_format)
