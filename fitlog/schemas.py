"""
Response schemas for the generative model.

Each model doubles as the ``response_schema`` sent upstream and as the
validator for what comes back. Field names are the camelCase keys the front
end reads.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class MealAnalysis(BaseModel):
  generatedMealName: str = Field(
    description="A short, objective name for the meal, e.g. 'Grilled chicken breast with broccoli'."
  )
  estimatedCalories: float = Field(description="Estimated total energy of the meal in kcal.")
  estimatedProteinG: float = Field(description="Estimated total protein of the meal in grams.")
  estimatedCarbsG: float = Field(description="Estimated total carbohydrates of the meal in grams.")
  estimatedFatG: float = Field(description="Estimated total fat of the meal in grams.")


class FullDayAnalysis(BaseModel):
  estimatedIntakeCalories: float = Field(description="Estimated total kcal eaten across all meals of the day.")
  estimatedIntakeProteinG: float = Field(description="Estimated total protein eaten in grams.")
  estimatedIntakeCarbsG: float = Field(description="Estimated total carbohydrates eaten in grams.")
  estimatedIntakeFatG: float = Field(description="Estimated total fat eaten in grams.")
  estimatedExpenditureCalories: float = Field(
    description="Estimated kcal burned by the described activity; 0 when no activity was logged."
  )
  dailySummary: str = Field(description="One objective sentence judging the day (intake, burn, deficit, weight).")


class KeyMetrics(BaseModel):
  totalWeightLoss: float = Field(description="Kilograms lost from the initial weight to the latest weight.")
  totalWaistReduction: float = Field(description="Centimetres lost between the first and last waist reading; 0 without data.")
  avgWeeklyLoss: float = Field(description="Average kilograms lost per week.")
  avgCalorieDeficit: float = Field(description="Average daily calorie deficit.")
  avgActivityExpenditure: float = Field(description="Average of 'estimatedExpenditure' across logged days.")


class Consistency(BaseModel):
  logStreak: float = Field(description="Number of consecutive most recent days with a log.")
  consistencyPercentage: float = Field(description="Percentage (0-100) of days in the period that have a log.")


class WeeklySummary(BaseModel):
  week: str = Field(description="Week label, e.g. 'Week 1' or '2024-10-01 ~ 2024-10-07'.")
  avgWeight: float = Field(description="Average weight that week.")
  weightChange: float = Field(description="Weight change against the previous week in kg; 0 for the first week.")


class SleepAnalysis(BaseModel):
  avgHours: float = Field(description="Average hours of sleep per night.")
  correlationComment: str = Field(description="One sentence on how sleep may relate to progress.")


class HydrationAnalysis(BaseModel):
  avgWaterL: float = Field(description="Average of 'waterL' across logged days.")
  comment: str = Field(description="One short professional comment on drinking habits.")


class MacroDistribution(BaseModel):
  proteinPercentage: float = Field(description="(avg proteinG * 4) / avg actualIntake * 100.")
  carbsPercentage: float = Field(description="(avg carbsG * 4) / avg actualIntake * 100.")
  fatPercentage: float = Field(description="(avg fatG * 9) / avg actualIntake * 100.")
  comment: str = Field(description="One professional comment on whether the macro split is balanced.")


class NutritionInsights(BaseModel):
  overall: str = Field(description="One sentence summarising the overall diet.")
  positive: str = Field(description="One aspect of the meals worth praising.")
  improvement: str = Field(description="One aspect of the meals to improve.")
  macroDistribution: MacroDistribution


class Superfood(BaseModel):
  food: str
  reason: str


class ExercisePrescription(BaseModel):
  recommendation: str
  details: List[str]


class AnalysisReport(BaseModel):
  progressScore: float = Field(description="Overall progress score between 0 and 100.")
  keyMetrics: KeyMetrics
  consistency: Consistency
  weeklySummary: List[WeeklySummary] = Field(description="Weight summary per week.")
  sleepAnalysis: SleepAnalysis
  hydrationAnalysis: HydrationAnalysis
  nutritionInsights: NutritionInsights
  achievements: List[str] = Field(description="Up to four main achievements.")
  actionableTips: List[str] = Field(description="Up to four concrete, actionable improvements.")
  recommendedSuperfoods: List[Superfood] = Field(description="Two or three foods suited to the user's goals.")
  exercisePrescription: ExercisePrescription
  potentialRisks: List[str] = Field(description="Health or adherence risks visible in the data.")
  weeklyOutlook: str = Field(description="What to expect next week if the current trend holds.")


__all__ = ["AnalysisReport", "FullDayAnalysis", "MealAnalysis"]
