# Text-generation prompt templates for the drama authoring flow.
# Every template asks for a bare JSON array so drama_service can parse it with extract_json_array.

SCREENWRITER_SYSTEM_PROMPT = "你是一个专业的短剧编剧。只输出JSON，不要输出任何解释。"

CHARACTERS_PROMPT_TEMPLATE = """
请根据以下短剧简介生成角色设定。

短剧简介：{description}
总集数：{total_episodes}

请生成主要角色（3-6个），每个角色包含：
1. 姓名
2. 年龄
3. 性格特点
4. 外貌描述
5. 角色背景

以JSON格式输出，格式如下：
[
  {{"name": "姓名", "age": "年龄", "personality": "性格特点", "appearance": "外貌描述", "background": "角色背景"}}
]
"""

SCENES_PROMPT_TEMPLATE = """
请根据以下短剧简介生成场景设定。

短剧简介：{description}
总集数：{total_episodes}

请生成主要场景（3-8个），每个场景包含：
1. 场景名称
2. 地点描述
3. 时间段（morning/afternoon/evening/night/dawn/dusk）
4. 场景氛围

以JSON格式输出，格式如下：
[
  {{"name": "场景名称", "location": "地点", "timeOfDay": "时间段", "atmosphere": "氛围"}}
]
"""

OUTLINE_PROMPT_TEMPLATE = """
请根据以下信息生成一个{total_episodes}集的短剧大纲。

总简介：{description}

角色设定：
{characters}

场景设定：
{scenes}

请为每一集生成：
1. 集标题
2. 本集简介（100-200字）

以JSON格式输出，格式如下：
[
  {{"episode": 1, "title": "标题", "synopsis": "简介"}}
]
"""

DIALOGUE_PROMPT_TEMPLATE = """
请根据以下故事大纲生成本集对话文本。

故事大纲：
{outline}

角色设定：
{characters}

场景：{scene}

请生成完整的对话文本，包含角色对话和场景描述。

以JSON格式输出，格式如下：
[
  {{"type": "action", "content": "场景动作描述"}},
  {{"type": "dialogue", "character": "角色名", "content": "对话内容"}}
]
"""

SHOTS_PROMPT_TEMPLATE = """
请根据以下对话文本生成分镜脚本。

对话文本：
{dialogue_text}

角色设定：
{characters}

场景设定：
{scenes}

请为每个对话生成分镜，包含：
1. 分镜序号
2. 镜头类型（extreme_long/long/full/medium_long/medium/medium_close/close_up/extreme_close_up/pov/two_shot）
3. 分镜描述
4. 视频提示词（用于AI生成视频）
5. 出场角色
6. 使用场景

以JSON格式输出，格式如下：
[
  {{"shotNumber": 1, "shotType": "medium", "shotDescription": "描述", "videoPrompt": "提示词", "character": "角色名", "scene": "场景名"}}
]
"""
