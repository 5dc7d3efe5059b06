"""
Test problem construction, evaluations and counters.
"""

import pytest
import numpy as np

from pyleastsq import create_problem, Evaluation
from pyleastsq._core.evaluation import ArrayEvaluation, LazyEvaluation
from pyleastsq._core.incrementor import Incrementor
from pyleastsq.problem import weight_square_root
from pyleastsq.exceptions import (
    ConfigurationError,
    LeastSquaresError,
    MaxCountExceededError,
    SingularMatrixError,
    TooManyEvaluationsError,
    TooManyIterationsError,
)

X = np.arange(5.0)
J_LINE = np.column_stack([X, np.ones_like(X)])


def line(p):
    return p[0] * X + p[1], J_LINE


class TestIncrementor:
    """Test the bounded counter."""

    def test_count_up_to_max(self):
        counter = Incrementor(3)
        for _ in range(3):
            counter.increment_count()
        assert counter.count == 3
        assert not counter.can_increment()

    def test_exceeding_max_raises(self):
        counter = Incrementor(2, TooManyIterationsError)
        counter.increment_count(2)
        with pytest.raises(TooManyIterationsError) as excinfo:
            counter.increment_count()
        assert excinfo.value.max_count == 2
        assert "iteration count" in str(excinfo.value)

    def test_reset(self):
        counter = Incrementor(1)
        counter.increment_count()
        counter.reset()
        assert counter.count == 0
        assert counter.can_increment()

    @pytest.mark.parametrize("maximal_count", [0, -5])
    def test_nonpositive_max(self, maximal_count):
        with pytest.raises(ConfigurationError):
            Incrementor(maximal_count)

    def test_error_hierarchy(self):
        assert issubclass(TooManyEvaluationsError, MaxCountExceededError)
        assert issubclass(MaxCountExceededError, LeastSquaresError)
        assert issubclass(ConfigurationError, ValueError)


class TestCreateProblem:
    """Test problem construction and evaluation."""

    def test_sizes(self):
        problem = create_problem(line, 3 * X + 2, [1.0, 1.0])
        assert problem.observation_size == 5
        assert problem.parameter_size == 2
        assert problem.convergence_checker is None

    def test_residual_convention(self):
        """Residuals are target minus model, Jacobian is the model's."""
        problem = create_problem(line, 3 * X + 2, [1.0, 1.0])
        evaluation = problem.evaluate(np.array([1.0, 1.0]))

        assert isinstance(evaluation, Evaluation)
        assert np.allclose(evaluation.residuals, 2 * X + 1)
        assert np.allclose(evaluation.jacobian, J_LINE)

    def test_start_is_copied(self):
        start = np.array([1.0, 1.0])
        problem = create_problem(line, 3 * X + 2, start)
        start[0] = 100.0
        assert problem.start[0] == 1.0
        problem.start[1] = 50.0
        assert problem.start[1] == 1.0

    def test_separate_jacobian(self):
        problem = create_problem(
            lambda p: p[0] * X + p[1], 3 * X + 2, [0.0, 0.0],
            jacobian=lambda p: J_LINE,
        )
        evaluation = problem.evaluate([3.0, 2.0])
        assert np.allclose(evaluation.residuals, 0.0)
        assert evaluation.jacobian.shape == (5, 2)

    def test_evaluation_read_only(self):
        problem = create_problem(line, 3 * X + 2, [1.0, 1.0])
        evaluation = problem.evaluate([1.0, 1.0])
        with pytest.raises(ValueError):
            evaluation.residuals[0] = 0.0
        with pytest.raises(ValueError):
            evaluation.point[0] = 0.0

    def test_counters_are_fresh(self):
        problem = create_problem(line, 3 * X + 2, [1.0, 1.0], max_evaluations=7)
        first = problem.get_evaluation_counter()
        first.increment_count(5)
        second = problem.get_evaluation_counter()
        assert second.count == 0
        assert second.maximal_count == 7

        with pytest.raises(TooManyEvaluationsError):
            second.increment_count(8)

    def test_wrong_model_shape(self):
        problem = create_problem(lambda p: (np.zeros(3), J_LINE), 3 * X, [1.0, 1.0])
        with pytest.raises(ValueError, match="model value"):
            problem.evaluate([1.0, 1.0])

    def test_wrong_point_shape(self):
        problem = create_problem(line, 3 * X, [1.0, 1.0])
        with pytest.raises(ValueError):
            problem.evaluate([1.0, 1.0, 1.0])

    def test_infinite_model_value(self):
        """Infinite model values are a soft failure, not an error."""
        def model(p):
            if p[0] < 0:
                return np.full(5, np.inf), np.full((5, 2), np.nan)
            return line(p)

        problem = create_problem(model, 3 * X, [1.0, 1.0])
        assert problem.evaluate([-1.0, 0.0]).cost == np.inf

    @pytest.mark.parametrize("kwargs", [
        {'max_evaluations': 0},
        {'max_iterations': -1},
    ])
    def test_invalid_budgets(self, kwargs):
        with pytest.raises(ConfigurationError):
            create_problem(line, 3 * X, [1.0, 1.0], **kwargs)

    def test_invalid_inputs(self):
        with pytest.raises(TypeError):
            create_problem("not callable", 3 * X, [1.0, 1.0])
        with pytest.raises(TypeError):
            create_problem(line, 3 * X, [1.0, 1.0], jacobian=J_LINE)
        with pytest.raises(TypeError):
            create_problem(line, 3 * X, [1.0, 1.0], checker=42)
        with pytest.raises(ValueError):
            create_problem(line, [1.0, np.nan, 2.0, 3.0, 4.0], [1.0, 1.0])

    def test_parameter_validator(self):
        """Validated point is the one evaluated and recorded."""
        problem = create_problem(
            line, 3 * X + 2, [1.0, 1.0],
            parameter_validator=lambda p: np.clip(p, 0.0, 2.5),
        )
        evaluation = problem.evaluate([5.0, -1.0])
        assert np.allclose(evaluation.point, [2.5, 0.0])
        assert np.allclose(evaluation.residuals, 3 * X + 2 - 2.5 * X)

    def test_lazy_evaluation(self):
        calls = []

        def model(p):
            calls.append(p.copy())
            return line(p)

        problem = create_problem(model, 3 * X + 2, [1.0, 1.0], lazy_evaluation=True)
        evaluation = problem.evaluate([3.0, 2.0])
        assert isinstance(evaluation, LazyEvaluation)
        assert calls == []

        assert evaluation.cost == 0.0
        evaluation.jacobian
        assert len(calls) == 1


class TestWeights:
    """Test weighting of residuals and Jacobian."""

    def test_diagonal_weight(self):
        weight = np.array([1.0, 4.0, 9.0, 0.0, 1.0])
        problem = create_problem(line, 3 * X + 2, [1.0, 1.0], weight=weight)
        evaluation = problem.evaluate([1.0, 1.0])

        root = np.sqrt(weight)
        assert np.allclose(evaluation.residuals, root * (2 * X + 1))
        assert np.allclose(evaluation.jacobian, root[:, np.newaxis] * J_LINE)

    def test_matrix_weight(self):
        np.random.seed(42)
        A = np.random.randn(5, 5)
        weight = A @ A.T + np.eye(5)
        root = weight_square_root(weight)

        assert np.allclose(root, root.T)
        assert np.allclose(root @ root, weight)

        problem = create_problem(line, 3 * X + 2, [1.0, 1.0], weight=weight)
        evaluation = problem.evaluate([1.0, 1.0])
        r = 2 * X + 1
        assert np.isclose(evaluation.chi_square, r @ weight @ r)

    def test_matrix_weight_lazy(self):
        weight = np.diag([1.0, 2.0, 3.0, 4.0, 5.0])
        eager = create_problem(line, 3 * X, [1.0, 1.0], weight=weight)
        lazy = create_problem(line, 3 * X, [1.0, 1.0], weight=weight, lazy_evaluation=True)
        assert np.allclose(
            eager.evaluate([1.0, 1.0]).residuals, lazy.evaluate([1.0, 1.0]).residuals
        )

    def test_invalid_weights(self):
        with pytest.raises(ValueError, match="non-negative"):
            weight_square_root([1.0, -1.0])
        with pytest.raises(ValueError, match="symmetric"):
            weight_square_root([[1.0, 2.0], [0.0, 1.0]])
        with pytest.raises(ValueError, match="positive semi-definite"):
            weight_square_root([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(ValueError, match="square"):
            weight_square_root(np.ones((2, 3)))

    def test_weight_size_mismatch(self):
        with pytest.raises(ValueError, match="number of observations"):
            create_problem(line, 3 * X, [1.0, 1.0], weight=np.ones(4))


class TestEvaluationStatistics:
    """Test statistics derived from an evaluation."""

    def setup_method(self):
        np.random.seed(42)
        self.J = np.random.randn(12, 3)
        self.r = np.random.randn(12)
        self.evaluation = ArrayEvaluation(np.zeros(3), self.r, self.J)

    def test_cost_and_rms(self):
        assert np.isclose(self.evaluation.cost, np.linalg.norm(self.r))
        assert np.isclose(self.evaluation.rms, np.sqrt(np.mean(self.r ** 2)))
        assert np.isclose(self.evaluation.chi_square, self.r @ self.r)

    def test_reduced_chi_square(self):
        assert np.isclose(
            self.evaluation.get_reduced_chi_square(3), (self.r @ self.r) / 9
        )
        with pytest.raises(ValueError):
            self.evaluation.get_reduced_chi_square(12)

    def test_covariances(self):
        expected = np.linalg.inv(self.J.T @ self.J)
        covariances = self.evaluation.get_covariances()
        assert np.allclose(covariances, expected)
        assert np.allclose(self.evaluation.get_sigma(), np.sqrt(np.diag(expected)))

    def test_singular_covariances(self):
        J = self.J.copy()
        J[:, 2] = 0.0
        evaluation = ArrayEvaluation(np.zeros(3), self.r, J)
        with pytest.raises(SingularMatrixError):
            evaluation.get_covariances()

    def test_sigma_threshold(self):
        """A large threshold declares a regular matrix singular."""
        with pytest.raises(SingularMatrixError):
            self.evaluation.get_sigma(threshold=1e6)

    def test_repr(self):
        assert 'ArrayEvaluation' in repr(self.evaluation)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
