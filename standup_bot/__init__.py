# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack check-in and daily standup bot.

This package records employee check-in/check-out events, walks users through
a multi-step standup form, persists the results and shares standup summaries
with the Slack channels of the projects they mention.
"""

__version__ = "0.1.0"
