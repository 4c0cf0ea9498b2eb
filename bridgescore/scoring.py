import csv
import json
from pathlib import Path
from typing import List

from .schemas import CallRecord


class OutputGenerator:
    """Writes scorecards for a batch of scored calls"""

    def __init__(self):
        pass

    def _scored(self, calls: List[CallRecord]) -> List[CallRecord]:
        return [c for c in calls if c.score is not None]

    def _step_keys(self, calls: List[CallRecord]) -> List[str]:
        keys = []
        for call in calls:
            for step_score in call.score.step_scores:
                if step_score.step not in keys:
                    keys.append(step_score.step)
        return keys

    def generate_json_output(self, calls: List[CallRecord], output_path: Path):
        output_data = [call.model_dump(mode='json', by_alias=True) for call in self._scored(calls)]

        with open(output_path, 'w') as f:
            json.dump(output_data, f, indent=2)

    def generate_csv_output(self, calls: List[CallRecord], output_path: Path):
        calls = self._scored(calls)
        if not calls:
            return

        step_keys = self._step_keys(calls)

        with open(output_path, 'w', newline='') as f:
            writer = csv.writer(f)

            writer.writerow(
                ['call_id', 'organization_id', 'user_id', 'total', 'scoring_method', 'scored_at']
                + step_keys
            )

            for call in calls:
                credits = {s.step: s.credit for s in call.score.step_scores}
                writer.writerow([
                    call.call_id,
                    call.organization_id or '',
                    call.user_id or '',
                    call.score.total,
                    call.score.scoring_method.value,
                    call.score.scored_at.isoformat(),
                ] + [credits.get(key, '') for key in step_keys])

    def generate_leaderboard(self, calls: List[CallRecord], output_path: Path):
        calls = self._scored(calls)
        if not calls:
            return

        ranked = sorted(calls, key=lambda c: c.score.total, reverse=True)
        step_keys = self._step_keys(ranked)
        remote_count = sum(1 for c in ranked if c.score.scoring_method.value == 'remote')
        average = sum(c.score.total for c in ranked) / len(ranked)

        markdown_content = f"""# BridgeScore - Call Leaderboard

## Summary Statistics
- **Total Calls Scored**: {len(ranked)}
- **Average Score**: {average:.1f}
- **Scored Remotely**: {remote_count}
- **Scored Locally**: {len(ranked) - remote_count}

## Ranked Results

| Rank | Call ID | Organization | Total | Method | {' | '.join(step_keys)} |
|------|---------|--------------|-------|--------|{'|'.join('---' for _ in step_keys)}|
"""

        for i, call in enumerate(ranked, 1):
            colors = {s.step: s.color.value for s in call.score.step_scores}
            cells = ' | '.join(colors.get(key, '-') for key in step_keys)
            markdown_content += (
                f"| {i} | {call.call_id} | {call.organization_id or 'N/A'} | **{call.score.total}** "
                f"| {call.score.scoring_method.value} | {cells} |\n"
            )

        markdown_content += "\n## Coaching\n\n"

        for call in ranked:
            coaching = call.score.coaching
            if not coaching:
                continue
            markdown_content += f"### {call.call_id} ({call.score.total})\n\n**Did well**:\n"
            for strength in coaching.things_they_did_well:
                markdown_content += f"- {strength}\n"
            markdown_content += "\n**To improve**:\n"
            for area in coaching.areas_for_improvement:
                markdown_content += f"- **{area.area}** ({area.bridge_step}): {area.how_to_improve}\n"
            markdown_content += "\n---\n\n"

        with open(output_path, 'w') as f:
            f.write(markdown_content)
