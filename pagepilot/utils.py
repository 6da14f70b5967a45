# pagepilot/utils.py
import json
import logging
import re
from collections import OrderedDict

import commentjson
import yaml
from json_repair import repair_json

logger = logging.getLogger("pagepilot")


class Utils():

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            text = f"\033[{color_code}m{text}\033[0m"
        logger.info(str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces {KEY} placeholders with the values passed in kwargs.

        Unlike str.format it only looks for the keys passed in kwargs, so literal
        braces (JSON examples inside prompts) survive untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result

    def load_fault_tolerant_json(self, json_str, ensure_ordered=False):
        """
        Attempts to load a JSON-like string produced by a model.
        Tries json and commentjson, then YAML on a sanitized copy, then the
        same again on the json_repair output.
        Raises ValueError when nothing yields a JSON object or array.
        """
        def sanitize_json_string(input_str):
            def process_string_segment(match):
                content = match.group(1)
                # unescaped backslashes not part of an escape sequence
                content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
                content = re.sub(r'(?<!\\)\n', r'\\n', content)
                return f'"{content}"'

            input_str = self.clean_triple_backticks(input_str)
            input_str = re.sub(r'^\s*//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)
            return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', process_string_segment, input_str, flags=re.DOTALL)

        def load_json(s):
            err = ""
            try:
                cleaned = self.clean_triple_backticks(s).strip()
                data = json.loads(cleaned, object_pairs_hook=OrderedDict) if ensure_ordered else json.loads(cleaned)
                if isinstance(data, (dict, list)):
                    return data, ""
            except ValueError:
                pass
            try:
                if ensure_ordered:
                    data = commentjson.loads(self.clean_triple_backticks(s), object_pairs_hook=OrderedDict)
                else:
                    data = commentjson.loads(self.clean_triple_backticks(s))
                if isinstance(data, (dict, list)):
                    return data, ""
                err = f"top-level value is {type(data).__name__}"
            except Exception as e:
                err = str(e)
            try:
                data = yaml.safe_load(sanitize_json_string(s))
                if isinstance(data, (dict, list)):
                    return data, ""
                err += f"\n--\nYAML produced {type(data).__name__}"
            except Exception as e:
                err += "\n--\n" + str(e)
            return None, err

        if not isinstance(json_str, str) or not json_str.strip():
            raise ValueError("load_fault_tolerant_json: empty input")

        data, err = load_json(json_str)
        if data is not None:
            return data

        repaired = repair_json(self.clean_triple_backticks(json_str))
        if isinstance(repaired, str) and repaired.strip():
            r_data, r_err = load_json(repaired)
            if r_data is not None:
                return r_data
            err += "\n--\n" + r_err

        raise ValueError(f"load_fault_tolerant_json: JSON parsing failed: {err}")
