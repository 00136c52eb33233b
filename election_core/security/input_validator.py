# election_core/security/input_validator.py

import re

import bleach

from election_core.errors import InvalidSelectionError

# Input validation and sanitisation for everything that arrives from the voting stations


class InputValidator:
    def __init__(self):
        # Names and titles carry no markup at all
        self.allowed_html_tags = []
        self.allowed_html_attributes = {}

        self.patterns = {
            'voter_id': re.compile(r'^VOTER\d{5}$'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE),
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValueError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = re.sub(self.patterns['xss_script'], '', input_str)
        sanitized = re.sub(self.patterns['xss_event'], '', sanitized)
        sanitized = bleach.clean(sanitized, tags=self.allowed_html_tags, attributes=self.allowed_html_attributes, strip=True)
        return sanitized.strip()

    def normalize_voter_id(self, voter_id):
        """Upper-cased, trimmed voter id, or None when it is not VOTER#####."""
        if not isinstance(voter_id, str):
            return None
        candidate = voter_id.strip().upper()
        if self.patterns['voter_id'].match(candidate):
            return candidate
        return None

    def _position_ref(self, value):
        if isinstance(value, bool) or value is None:
            raise InvalidSelectionError('Each ballot entry needs a position')
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip():
            return value.strip()
        raise InvalidSelectionError('Each ballot entry needs a position')

    def _candidate_id(self, value):
        if isinstance(value, bool):
            raise InvalidSelectionError(f'Invalid candidate id: {value!r}')
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        raise InvalidSelectionError(f'Invalid candidate id: {value!r}')

    def normalize_ballot_payload(self, payload):
        """Split a submitted ballot into (selections, abstentions).

        ``selections`` may be a list of ``{position, candidateId}`` objects or a
        mapping of position to candidate id. A null candidate id counts as an
        abstention for that position. ``abstentions`` may list positions
        either bare or as ``{position}`` objects.
        """
        if not isinstance(payload, dict):
            raise InvalidSelectionError('Ballot must be a JSON object')

        raw_selections = payload.get('selections') or []
        raw_abstentions = payload.get('abstentions') or []

        if isinstance(raw_selections, dict):
            raw_selections = [
                {'position': position, 'candidateId': candidate}
                for position, candidate in raw_selections.items()
            ]
        if not isinstance(raw_selections, list) or not isinstance(raw_abstentions, list):
            raise InvalidSelectionError('Selections and abstentions must be lists')

        selections = []
        abstentions = []
        for entry in raw_selections:
            if not isinstance(entry, dict):
                raise InvalidSelectionError('Each selection must be an object')
            position = self._position_ref(entry.get('position', entry.get('positionId')))
            candidate = entry.get('candidateId')
            if candidate is None:
                abstentions.append(position)
            else:
                selections.append((position, self._candidate_id(candidate)))

        for entry in raw_abstentions:
            if isinstance(entry, dict):
                entry = entry.get('position', entry.get('positionId'))
            abstentions.append(self._position_ref(entry))

        return selections, abstentions
