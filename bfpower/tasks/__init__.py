class Task:
    def fit(self, X, y=None):
        """
        Fit the task with the provided design points.
        """
        raise NotImplementedError("This method should be implemented by subclasses.")

    def _check_fitted(self):
        if not getattr(self, "fitted", False):
            raise ValueError("The task must be fitted before making predictions.")
