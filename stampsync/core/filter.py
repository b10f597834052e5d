"""
路径过滤器

功能:
- 排除同步标记文件（它在提交阶段单独传输）
- 排除用户配置的正则表达式
"""

import re
from pathlib import PurePosixPath
from typing import Iterable, List
import structlog

logger = structlog.get_logger()


class FileFilter:
    """路径过滤器"""

    def __init__(self, marker_name: str, patterns: Iterable[str] = ()):
        """
        初始化过滤器

        Args:
            marker_name: 同步标记文件名（位于副本根目录）
            patterns: 用户定义的排除正则表达式
        """
        self.marker_name = marker_name
        self.patterns: List[re.Pattern] = []

        for pattern_str in patterns:
            try:
                self.patterns.append(re.compile(pattern_str))
                logger.debug("Filter pattern compiled", pattern=pattern_str)
            except re.error as e:
                logger.error(
                    "Invalid regex pattern",
                    pattern=pattern_str,
                    error=str(e)
                )

    def should_ignore(self, rel_path: str) -> bool:
        """
        检查相对路径是否应该被过滤

        Args:
            rel_path: 相对于副本根目录的 POSIX 路径

        Returns:
            True 如果应该忽略
        """
        if rel_path in (self.marker_name, self.marker_name + '.tmp'):
            return True

        filename = PurePosixPath(rel_path).name
        for pattern in self.patterns:
            # 先匹配完整相对路径，再匹配文件名
            if pattern.match(rel_path) or pattern.match(filename):
                logger.debug("Path filtered (user pattern)", path=rel_path)
                return True

        return False

    def filter_paths(self, paths: Iterable[str]) -> List[str]:
        """批量过滤路径"""
        return [path for path in paths if not self.should_ignore(path)]
