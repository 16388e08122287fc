"""Shared constants for shot-rate models."""

# Event-type code flagging a shot attempt in the event table
SHOT_EVENT_CODE = 1

# Regulation match length used to normalize attempt counts
MINUTES_PER_GAME = 90.0

# Advisory gate for the potential scale reduction factor
PSRF_THRESHOLD = 1.2

# Name under which every posterior draw carries its deviance
DEVIANCE = "deviance"

# Index column linking observations to teams
TEAM_INDEX = "team"

# Observed outcome column
OUTCOME = "attempts"

# Match-level covariate column
WIN_PROB = "win_prob"
