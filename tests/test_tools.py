import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms.set_builder import SetBuilder
from models import ExerciseEntry, ExerciseMode, ExerciseSet, ExerciseType
from tools import ExerciseTools


class SetBuilderTestCase(unittest.TestCase):
    def test_uniform_has_no_rest_on_last_set(self) -> None:
        sets = SetBuilder.uniform(4, 10, 20.0, 90)
        self.assertEqual(len(sets), 4)
        self.assertEqual([s.rest for s in sets], [90, 90, 90, None])
        self.assertTrue(all(s.value == 10 and s.weight == 20.0 for s in sets))

    def test_zero_rest_is_dropped(self) -> None:
        sets = SetBuilder.uniform(2, 5, rest=0)
        self.assertEqual([s.rest for s in sets], [None, None])

    def test_pyramid(self) -> None:
        sets = SetBuilder.pyramid(4)
        self.assertEqual([s.value for s in sets], [1, 2, 3, 4, 3, 2, 1])
        self.assertEqual(sum(s.value for s in sets), 16)

    def test_variable_with_per_set_rest(self) -> None:
        sets = SetBuilder.variable([12, 10, 8], rests=[60, 90, 120])
        self.assertEqual([s.value for s in sets], [12, 10, 8])
        self.assertEqual([s.rest for s in sets], [60, 90, None])

    def test_for_mode_defaults(self) -> None:
        reps = SetBuilder.for_mode(ExerciseMode.REPS)
        self.assertEqual([s.value for s in reps], [10, 10, 10, 10])
        static = SetBuilder.for_mode(ExerciseMode.STATIC, sets=3, seconds=45)
        self.assertEqual([s.value for s in static], [45, 45, 45])
        variable = SetBuilder.for_mode(ExerciseMode.VARIABLE_SETS, reps_per_set=[5, 6])
        self.assertEqual([s.value for s in variable], [5, 6])
        pyramid = SetBuilder.for_mode("pyramid", pyramid_top=2)
        self.assertEqual([s.value for s in pyramid], [1, 2, 1])

    def test_type_for_mode(self) -> None:
        self.assertEqual(SetBuilder.type_for_mode(ExerciseMode.STATIC), ExerciseType.STATIC)
        self.assertEqual(SetBuilder.type_for_mode(ExerciseMode.PYRAMID), ExerciseType.DYNAMIC)


class ExerciseToolsTestCase(unittest.TestCase):
    def test_format_seconds(self) -> None:
        self.assertEqual(ExerciseTools.format_seconds(90), "1m 30s")
        self.assertEqual(ExerciseTools.format_seconds(60), "1m")
        self.assertEqual(ExerciseTools.format_seconds(45), "45s")
        self.assertEqual(ExerciseTools.format_seconds(0), "")
        self.assertEqual(ExerciseTools.format_seconds(None), "")

    def test_labels(self) -> None:
        self.assertEqual(ExerciseTools.mode_label(ExerciseMode.VARIABLE_SETS), "Variable")
        self.assertEqual(ExerciseTools.mode_label("static"), "Static")
        self.assertEqual(ExerciseTools.type_label(ExerciseType.DYNAMIC), "Dynamic")

    def test_sets_summary(self) -> None:
        self.assertEqual(
            ExerciseTools.sets_summary(ExerciseMode.REPS, SetBuilder.uniform(4, 10)),
            "4 × 10 reps",
        )
        self.assertEqual(
            ExerciseTools.sets_summary(ExerciseMode.STATIC, SetBuilder.uniform(3, 30)),
            "3 × 30s",
        )
        self.assertEqual(
            ExerciseTools.sets_summary(ExerciseMode.VARIABLE_SETS, SetBuilder.variable([8, 6], 50.0)),
            "2 sets (8, 6) @ 50kg",
        )
        self.assertEqual(
            ExerciseTools.sets_summary(ExerciseMode.PYRAMID, SetBuilder.pyramid(5)),
            "Pyramid to 5",
        )

    def test_entry_summary_includes_rest(self) -> None:
        entry = ExerciseEntry(
            1, ExerciseType.DYNAMIC, ExerciseMode.REPS, [ExerciseSet(5)], 0, 120
        )
        self.assertEqual(
            ExerciseTools.entry_summary("Dips", entry), "Dips: 1 × 5 reps, then rest 2m"
        )


if __name__ == "__main__":
    unittest.main()
